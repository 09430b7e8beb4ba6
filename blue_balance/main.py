"""
Entry point for the Blue Balance FastAPI application.

This module defines the API endpoints for managing hydration profiles,
logging beverages, reading pacing metrics (expected intake, on-track
status, interval progress, streak and hydration score) and talking to
the AI coach. The application automatically chooses between an
in-memory repository for testing and a MongoDB-backed repository for
production based on the presence of the `MONGO_URI` environment
variable.

Every metric endpoint accepts an optional `now` query parameter. When it
is omitted the server reads the clock once per request and passes that
single instant to the pacing engine, so all numbers in a response agree.
"""

import logging
import os
from datetime import datetime
from typing import List, Literal, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query

# Load environment variables from .env file
load_dotenv()
from fastapi.middleware.cors import CORSMiddleware

from . import pacing
from .agents import ask_coach, generate_tip
from .repository import HydrationRepository, InMemoryRepository, MongoRepository
from .schemas import (
    BeverageCreate,
    BeverageRead,
    BeverageShare,
    ChatMessageRead,
    CoachReply,
    CoachRequest,
    ConversionRead,
    DailyTotal,
    GoalRecommendation,
    GoalRequest,
    IntervalProgress,
    LogList,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
    ProgressSnapshot,
    ScoreRead,
    StreakRead,
    TipRead,
    Unit,
    WaterLogCreate,
    WaterLogRead,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

FilterMode = Literal["hour", "day", "week", "month", "custom"]


def get_repository() -> HydrationRepository:
    """Factory that returns the appropriate repository implementation."""
    mongo_uri = os.getenv("MONGO_URI")
    if mongo_uri:
        logger.info("Using MongoDB repository")
        return MongoRepository(mongo_uri, os.getenv("MONGO_DB_NAME", "blue_balance"))
    logger.info("MONGO_URI not set, using in-memory repository")
    return InMemoryRepository()


app = FastAPI(title="Blue Balance API")

# Allow CORS for local development; production should restrict origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize repository on startup."""
    app.state.repo = get_repository()


def get_repo() -> HydrationRepository:
    """Dependency to retrieve the repository instance."""
    return app.state.repo


def reference_time(now: Optional[datetime] = Query(None, description="Reference instant for metrics.")) -> datetime:
    """Dependency resolving the instant a request is evaluated at."""
    return now or datetime.now().astimezone()


async def _profile_or_404(repo: HydrationRepository, profile_id: str) -> ProfileRead:
    profile = await repo.get_profile(profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail=f"Profile with id {profile_id} not found")
    return profile


# Profiles


@app.post("/profiles", response_model=ProfileRead)
async def create_profile(profile: ProfileCreate, repo: HydrationRepository = Depends(get_repo)) -> ProfileRead:
    """Create a profile and seed its default beverages."""
    return await repo.create_profile(profile)


@app.get("/profiles", response_model=List[ProfileRead])
async def list_profiles(repo: HydrationRepository = Depends(get_repo)) -> List[ProfileRead]:
    return await repo.list_profiles()


@app.get("/profiles/{profile_id}", response_model=ProfileRead)
async def get_profile(profile_id: str, repo: HydrationRepository = Depends(get_repo)) -> ProfileRead:
    return await _profile_or_404(repo, profile_id)


@app.patch("/profiles/{profile_id}", response_model=ProfileRead)
async def update_profile(
    profile_id: str, updates: ProfileUpdate, repo: HydrationRepository = Depends(get_repo)
) -> ProfileRead:
    try:
        return await repo.update_profile(profile_id, updates)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.delete("/profiles/{profile_id}", status_code=204)
async def delete_profile(profile_id: str, repo: HydrationRepository = Depends(get_repo)) -> None:
    try:
        await repo.delete_profile(profile_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# Logs


@app.post("/profiles/{profile_id}/logs", response_model=WaterLogRead)
async def add_log(
    profile_id: str,
    log: WaterLogCreate,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> WaterLogRead:
    """Log a beverage. The stored amount is scaled by its hydration factor."""
    try:
        return await repo.add_log(profile_id, log, now)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/profiles/{profile_id}/logs", response_model=LogList)
async def list_logs(
    profile_id: str,
    filter: FilterMode = "day",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> LogList:
    """Logs matching a time filter, newest first, with their total."""
    await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    custom_range = (start, end) if start and end else None
    selected = pacing.get_filtered_logs(logs, filter, now, custom_range)
    return LogList(logs=selected, total=pacing.sum_amounts(selected))


@app.delete("/logs/{log_id}", status_code=204)
async def delete_log(log_id: str, repo: HydrationRepository = Depends(get_repo)) -> None:
    try:
        await repo.delete_log(log_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.post("/profiles/{profile_id}/logs/undo", response_model=Optional[WaterLogRead])
async def undo_last_log(
    profile_id: str,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> Optional[WaterLogRead]:
    """Remove today's most recent log; returns it, or null when there is none."""
    await _profile_or_404(repo, profile_id)
    return await repo.undo_last_log(profile_id, now)


# Beverages


@app.get("/profiles/{profile_id}/beverages", response_model=List[BeverageRead])
async def list_beverages(profile_id: str, repo: HydrationRepository = Depends(get_repo)) -> List[BeverageRead]:
    await _profile_or_404(repo, profile_id)
    return await repo.list_beverages(profile_id)


@app.post("/profiles/{profile_id}/beverages", response_model=BeverageRead)
async def add_beverage(
    profile_id: str, beverage: BeverageCreate, repo: HydrationRepository = Depends(get_repo)
) -> BeverageRead:
    await _profile_or_404(repo, profile_id)
    return await repo.add_beverage(profile_id, beverage)


@app.delete("/beverages/{beverage_id}", status_code=204)
async def delete_beverage(beverage_id: str, repo: HydrationRepository = Depends(get_repo)) -> None:
    try:
        await repo.delete_beverage(beverage_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# Metrics


@app.get("/profiles/{profile_id}/progress", response_model=ProgressSnapshot)
async def get_progress(
    profile_id: str,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> ProgressSnapshot:
    """Today's intake against the time-aware target, plus streak, score and interval."""
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return pacing.get_progress_snapshot(profile, logs, now)


@app.get("/profiles/{profile_id}/interval", response_model=IntervalProgress)
async def get_interval(
    profile_id: str,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> IntervalProgress:
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return pacing.get_current_interval_progress(profile, logs, now)


@app.get("/profiles/{profile_id}/score", response_model=ScoreRead)
async def get_score(
    profile_id: str,
    filter: FilterMode = "day",
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> ScoreRead:
    """Hydration score over the logs selected by `filter` (today by default)."""
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    scope = pacing.get_filtered_logs(logs, filter, now)
    score = pacing.get_hydration_score(profile, logs, now, scope=scope)
    return ScoreRead(score=score, label=pacing.score_label(score))


@app.get("/profiles/{profile_id}/streak", response_model=StreakRead)
async def get_streak(
    profile_id: str,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> StreakRead:
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return StreakRead(streak=pacing.get_streak(profile, logs, now))


@app.get("/profiles/{profile_id}/split", response_model=List[BeverageShare])
async def get_split(
    profile_id: str,
    filter: FilterMode = "day",
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> List[BeverageShare]:
    """Breakdown of intake by beverage."""
    await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return pacing.get_beverage_split(pacing.get_filtered_logs(logs, filter, now))


@app.get("/profiles/{profile_id}/history", response_model=List[DailyTotal])
async def get_history(
    profile_id: str,
    days: int = Query(7, ge=1, le=30),
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> List[DailyTotal]:
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return pacing.get_daily_totals(profile, logs, now, days)


@app.post("/goal/recommend", response_model=GoalRecommendation)
async def recommend_goal(request: GoalRequest) -> GoalRecommendation:
    """Suggest a daily goal from sex, activity level and age."""
    return pacing.recommend_goal(request.sex, request.activity_level, request.age, request.unit_preference)


@app.get("/convert", response_model=ConversionRead)
async def convert(amount: float, from_unit: Unit, to_unit: Unit) -> ConversionRead:
    return ConversionRead(
        amount=amount,
        from_unit=from_unit,
        to_unit=to_unit,
        result=pacing.convert_amount(amount, from_unit, to_unit),
    )


# Coach


@app.post("/profiles/{profile_id}/coach", response_model=CoachReply)
async def coach(
    profile_id: str,
    request: CoachRequest,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> CoachReply:
    """
    Ask the AI coach a question. Both the question and the reply are saved
    to the chat history. A settings directive in the reply is returned as
    `action` for the client to apply.
    """
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    history = await repo.list_chat_messages(profile_id)
    await repo.add_chat_message(profile_id, "user", request.message, now)
    reply = await ask_coach(request.message, profile, logs, history, now)
    await repo.add_chat_message(profile_id, "assistant", reply.response, now)
    return reply


@app.get("/profiles/{profile_id}/chat", response_model=List[ChatMessageRead])
async def list_chat(profile_id: str, repo: HydrationRepository = Depends(get_repo)) -> List[ChatMessageRead]:
    await _profile_or_404(repo, profile_id)
    return await repo.list_chat_messages(profile_id)


@app.delete("/profiles/{profile_id}/chat", status_code=204)
async def clear_chat(profile_id: str, repo: HydrationRepository = Depends(get_repo)) -> None:
    await _profile_or_404(repo, profile_id)
    await repo.clear_chat_history(profile_id)


@app.get("/profiles/{profile_id}/tip", response_model=TipRead)
async def get_tip(
    profile_id: str,
    repo: HydrationRepository = Depends(get_repo),
    now: datetime = Depends(reference_time),
) -> TipRead:
    profile = await _profile_or_404(repo, profile_id)
    logs = await repo.list_logs(profile_id, now)
    return TipRead(tip=await generate_tip(profile, logs, now))
