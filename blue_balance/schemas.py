"""
Pydantic schemas for the Blue Balance hydration API.

These data models define the structure of requests and responses used by
the FastAPI application, as well as the derived values produced by the
pacing engine. Keeping schemas separate from the storage layer lets the
engine and the tests work against plain Python objects.
"""

from datetime import date as dt_date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

from .utils import is_valid_clock

Unit = Literal["oz", "ml"]
ActivityLevel = Literal["light", "moderate", "high"]

ACTION_TYPES = (
    "update_goal",
    "add_water",
    "update_schedule",
    "update_interval",
    "update_reminders",
    "update_theme",
)

DEFAULT_BEVERAGES = [
    {"name": "Water", "serving_size_oz": 8, "serving_size_ml": 240, "hydration_factor": 1.0, "icon": "droplet"},
    {"name": "Sparkling Water", "serving_size_oz": 12, "serving_size_ml": 355, "hydration_factor": 1.0, "icon": "sparkles"},
    {"name": "Tea", "serving_size_oz": 8, "serving_size_ml": 240, "hydration_factor": 0.9, "icon": "leaf"},
    {"name": "Coffee", "serving_size_oz": 8, "serving_size_ml": 240, "hydration_factor": 0.8, "icon": "coffee"},
    {"name": "Orange Juice", "serving_size_oz": 8, "serving_size_ml": 240, "hydration_factor": 0.85, "icon": "citrus"},
    {"name": "Sports Drink", "serving_size_oz": 12, "serving_size_ml": 355, "hydration_factor": 0.95, "icon": "zap"},
    {"name": "Soda", "serving_size_oz": 12, "serving_size_ml": 355, "hydration_factor": 0.5, "icon": "cup-soda"},
]


def _check_clock(value: str) -> str:
    if not is_valid_clock(value):
        raise ValueError("time must be formatted as HH:MM")
    return value


ClockTime = Annotated[str, AfterValidator(_check_clock)]


class ProfileCreate(BaseModel):
    """Schema for creating a new hydration profile."""

    username: str = Field("User", description="Display name of the profile.")
    first_name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, gt=0, description="Body weight in kilograms.")
    unit_preference: Unit = "oz"
    wake_time: ClockTime = Field("07:00", description="Clock time the user wakes up, HH:MM.")
    sleep_time: ClockTime = Field(
        "22:00",
        description=(
            "Clock time the user goes to sleep, HH:MM. A value at or before"
            " wake_time means the user sleeps after midnight."
        ),
    )
    activity_level: ActivityLevel = "moderate"
    daily_goal: float = Field(80, gt=0, description="Daily intake goal in the profile's unit.")
    interval_length: int = Field(60, gt=0, description="Length of a pacing interval in minutes.")
    theme: str = "midnight"
    reminders_enabled: bool = False
    reminder_interval: int = Field(60, gt=0)


class ProfileUpdate(BaseModel):
    """Partial update of a profile; unset fields are left untouched."""

    username: Optional[str] = None
    first_name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, gt=0)
    unit_preference: Optional[Unit] = None
    wake_time: Optional[ClockTime] = None
    sleep_time: Optional[ClockTime] = None
    activity_level: Optional[ActivityLevel] = None
    daily_goal: Optional[float] = Field(None, gt=0)
    interval_length: Optional[int] = Field(None, gt=0)
    theme: Optional[str] = None
    reminders_enabled: Optional[bool] = None
    reminder_interval: Optional[int] = Field(None, gt=0)


class ProfileRead(ProfileCreate):
    """Schema returned when reading a profile."""

    id: str

    class Config:
        from_attributes = True


class WaterLogCreate(BaseModel):
    """Schema for logging a beverage.

    The stored amount is the effective amount: the raw volume multiplied
    by the hydration factor of the beverage.
    """

    amount: float = Field(..., ge=0, description="Raw volume in the profile's unit.")
    drink_type: str = "Water"
    hydration_factor: float = Field(1.0, ge=0, le=1)
    logged_at: Optional[datetime] = None


class WaterLogRead(BaseModel):
    id: str
    profile_id: str
    amount: float
    drink_type: str
    logged_at: datetime


class BeverageCreate(BaseModel):
    name: str = "Custom Beverage"
    serving_size: float = Field(8, gt=0)
    hydration_factor: float = Field(1.0, ge=0, le=1)
    icon: str = "droplet"


class BeverageRead(BeverageCreate):
    id: str
    profile_id: str
    is_default: bool = False


class ChatMessageRead(BaseModel):
    id: str
    profile_id: str
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime


class CoachAction(BaseModel):
    """Structured directive the coach may attach to a reply."""

    type: str
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def known_type(cls, value: str) -> str:
        if value not in ACTION_TYPES:
            raise ValueError(f"unknown action type {value!r}")
        return value


class CoachRequest(BaseModel):
    message: str = Field(..., min_length=1, description="Question for the coach.")


class CoachReply(BaseModel):
    response: str
    action: Optional[CoachAction] = None
    error: Optional[str] = None


class TipRead(BaseModel):
    tip: str


class AwakeWindow(BaseModel):
    wake: datetime
    sleep: datetime


class ExpectedRange(BaseModel):
    min: float
    max: float


class IntervalProgress(BaseModel):
    current_amount: float
    target_amount: float
    time_remaining_ms: int
    interval_index: int
    total_intervals: int
    interval_start: datetime
    interval_end: datetime
    complete: bool


class BeverageShare(BaseModel):
    name: str
    amount: float
    percentage: float


class DailyTotal(BaseModel):
    date: dt_date
    amount: float
    goal_met: bool


class ProgressSnapshot(BaseModel):
    """Everything the dashboard and the coach need for one instant."""

    current_intake: float
    daily_goal: float
    unit: Unit
    expected_intake: float
    expected_range: ExpectedRange
    on_track: bool
    remaining_amount: float
    time_progress: float
    time_remaining_hours: int
    time_remaining_minutes: int
    streak: int
    hydration_score: int
    score_label: str
    interval: IntervalProgress


class ScoreRead(BaseModel):
    score: int
    label: str


class StreakRead(BaseModel):
    streak: int


class ConversionRead(BaseModel):
    amount: float
    from_unit: Unit
    to_unit: Unit
    result: float


class GoalRecommendation(BaseModel):
    daily_goal: int
    unit: Unit
    baseline_ml: float


class GoalRequest(BaseModel):
    sex: Optional[Literal["male", "female"]] = None
    activity_level: ActivityLevel = "moderate"
    age: Optional[int] = Field(None, ge=0)
    unit_preference: Unit = "oz"


class LogList(BaseModel):
    logs: List[WaterLogRead]
    total: float
