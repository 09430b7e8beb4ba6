"""
Pacing engine for daily hydration goals.

Every function in this module is a pure computation over a profile
configuration, a collection of water logs and an explicit reference
instant ``now``. Nothing here reads the system clock, touches storage or
mutates its inputs, so callers (the API, the coach, a timer in a client)
simply call again whenever they want fresh numbers.

A profile is any object exposing ``daily_goal``, ``unit_preference``,
``wake_time``, ``sleep_time`` and ``interval_length`` (minutes). A log is
any object exposing ``amount``, ``drink_type`` and ``logged_at``. Log
amounts are effective amounts, already multiplied by the beverage's
hydration factor.

Degenerate input never raises: a zero goal reads as 0% complete, a zero
expected intake reads as perfect pace, and unparseable clock strings fall
back to midnight components.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from .schemas import (
    AwakeWindow,
    BeverageShare,
    DailyTotal,
    ExpectedRange,
    GoalRecommendation,
    IntervalProgress,
    ProgressSnapshot,
)
from .utils import parse_clock

ML_PER_OZ = 29.5735
TOLERANCE_RATIO = 0.10
STREAK_LOOKBACK_DAYS = 30
PACE_RATIO_CAP = 1.2

GOAL_WEIGHT = 40
PACE_WEIGHT = 30
CONSISTENCY_WEIGHT = 30

FILTER_WINDOWS = {
    "hour": timedelta(hours=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


# ---------------------------------------------------------------------------
# Time handling
# ---------------------------------------------------------------------------


def _to_frame(ts: datetime, now: datetime) -> datetime:
    """Express ``ts`` in the same timezone frame as ``now``.

    Aware timestamps are converted; naive ones are assumed to already be in
    ``now``'s zone. A naive ``now`` means local time.
    """
    if now.tzinfo is None:
        if ts.tzinfo is None:
            return ts
        return ts.astimezone().replace(tzinfo=None)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=now.tzinfo)
    return ts.astimezone(now.tzinfo)


def _midnight(day: date, now: datetime) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=now.tzinfo)


def _ms(delta: timedelta) -> float:
    return delta.total_seconds() * 1000


def resolve_awake_window(wake_time: str, sleep_time: str, now: datetime) -> AwakeWindow:
    """
    Build today's awake window from two ``HH:MM`` clock times.

    Sleep at or before wake means the user goes to bed after midnight, so
    the sleep boundary moves to the next calendar day. Equal times give a
    full 24 hour window rather than an empty one.
    """
    wake_hour, wake_min = parse_clock(wake_time)
    sleep_hour, sleep_min = parse_clock(sleep_time)
    wake = now.replace(hour=wake_hour, minute=wake_min, second=0, microsecond=0)
    sleep = now.replace(hour=sleep_hour, minute=sleep_min, second=0, microsecond=0)
    if sleep <= wake:
        sleep = sleep + timedelta(days=1)
    return AwakeWindow(wake=wake, sleep=sleep)


def _window(config, now: datetime) -> AwakeWindow:
    return resolve_awake_window(config.wake_time, config.sleep_time, now)


def get_time_progress(config, now: datetime) -> float:
    """Fraction of the awake window that has elapsed, in [0, 1]."""
    window = _window(config, now)
    if now < window.wake:
        return 0.0
    if now > window.sleep:
        return 1.0
    return _ms(now - window.wake) / _ms(window.sleep - window.wake)


def get_time_remaining(config, now: datetime) -> Tuple[int, int]:
    """Whole hours and minutes left until sleep."""
    window = _window(config, now)
    remaining_ms = max(0.0, _ms(window.sleep - now))
    hours = int(remaining_ms // (60 * 60 * 1000))
    minutes = int((remaining_ms % (60 * 60 * 1000)) // (60 * 1000))
    return hours, minutes


# ---------------------------------------------------------------------------
# Expectation
# ---------------------------------------------------------------------------


def get_expected_intake(config, now: datetime) -> float:
    """Linear share of the daily goal that should be drunk by ``now``."""
    window = _window(config, now)
    if now < window.wake:
        return 0
    if now > window.sleep:
        return config.daily_goal
    total_ms = _ms(window.sleep - window.wake)
    elapsed_ms = min(max(0.0, _ms(now - window.wake)), total_ms)
    return config.daily_goal * (elapsed_ms / total_ms)


def get_expected_range(config, now: datetime) -> ExpectedRange:
    expected = get_expected_intake(config, now)
    tolerance = config.daily_goal * TOLERANCE_RATIO
    return ExpectedRange(min=max(0, expected - tolerance), max=expected + tolerance)


def is_on_track(config, logs: Iterable, now: datetime) -> bool:
    """True unless today's intake is below the lower tolerance bound.

    Drinking more than the upper bound still counts as on track.
    """
    return get_today_intake(logs, now) >= get_expected_range(config, now).min


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def sum_amounts(logs: Iterable) -> float:
    return sum(log.amount for log in logs)


def get_logs_between(logs: Iterable, start: datetime, end: datetime, now: Optional[datetime] = None) -> List:
    """Logs with ``start <= logged_at < end``, original order kept."""
    frame = now or start
    return [log for log in logs if start <= _to_frame(log.logged_at, frame) < end]


def get_today_intake(logs: Iterable, now: datetime) -> float:
    return sum_amounts(get_filtered_logs(logs, "day", now))


def get_filtered_logs(
    logs: Sequence,
    mode: str,
    now: datetime,
    custom_range: Optional[Tuple[datetime, datetime]] = None,
) -> List:
    """
    Select logs by a named time filter.

    ``hour``, ``week`` and ``month`` are trailing windows ending now; ``day``
    starts at local midnight. ``custom`` is inclusive at both ends and
    returns everything when no range is given. Unknown filters behave like
    ``day``. Relative order is preserved, so a newest-first collection stays
    newest-first.
    """
    if mode == "custom":
        if custom_range is None:
            return list(logs)
        start, end = (_to_frame(ts, now) for ts in custom_range)
        return [log for log in logs if start <= _to_frame(log.logged_at, now) <= end]
    if mode in FILTER_WINDOWS:
        start = now - FILTER_WINDOWS[mode]
    else:
        start = _midnight(now.date(), now)
    return [log for log in logs if _to_frame(log.logged_at, now) >= start]


def get_day_intake(logs: Iterable, day: date, now: datetime) -> float:
    """Total intake for one calendar day."""
    start = _midnight(day, now)
    return sum_amounts(get_logs_between(logs, start, start + timedelta(days=1), now))


def get_daily_totals(config, logs: Sequence, now: datetime, days: int = 7) -> List[DailyTotal]:
    """Per-day totals for the last ``days`` days, oldest first."""
    today = now.date()
    totals: List[DailyTotal] = []
    for offset in range(max(days, 0) - 1, -1, -1):
        day = today - timedelta(days=offset)
        amount = get_day_intake(logs, day, now)
        totals.append(DailyTotal(date=day, amount=amount, goal_met=amount >= config.daily_goal))
    return totals


def get_beverage_split(logs: Iterable) -> List[BeverageShare]:
    """Share of intake by drink type, largest first."""
    grouped = {}
    total = 0.0
    for log in logs:
        name = log.drink_type or "Water"
        grouped[name] = grouped.get(name, 0.0) + log.amount
        total += log.amount
    shares = [
        BeverageShare(name=name, amount=amount, percentage=(amount / total) * 100 if total > 0 else 0.0)
        for name, amount in grouped.items()
    ]
    return sorted(shares, key=lambda share: share.amount, reverse=True)


def get_remaining_amount(config, logs: Iterable, now: datetime) -> float:
    return max(0, config.daily_goal - get_today_intake(logs, now))


# ---------------------------------------------------------------------------
# Streak
# ---------------------------------------------------------------------------


def get_streak(config, logs: Sequence, now: datetime) -> int:
    """
    Count consecutive days, walking back from today, on which the goal was met.

    Today counts only once it is met; an unfinished today is skipped without
    breaking the run. The first past day below goal ends the walk. At most
    ``STREAK_LOOKBACK_DAYS`` days are examined.
    """
    streak = 0
    today = now.date()
    for i in range(STREAK_LOOKBACK_DAYS):
        day_intake = get_day_intake(logs, today - timedelta(days=i), now)
        if day_intake >= config.daily_goal:
            streak += 1
        elif i == 0:
            continue
        else:
            break
    return streak


# ---------------------------------------------------------------------------
# Intervals
# ---------------------------------------------------------------------------


def _segment(window: AwakeWindow, interval_length: float) -> Tuple[float, int]:
    """Interval length in ms and the number of intervals in the window."""
    window_ms = _ms(window.sleep - window.wake)
    interval_ms = (interval_length or 0) * 60 * 1000
    if interval_ms <= 0:
        return window_ms, 1
    return interval_ms, max(math.ceil(window_ms / interval_ms), 1)


def _interval_index(window: AwakeWindow, interval_ms: float, total_intervals: int, now: datetime) -> int:
    elapsed_ms = max(0.0, _ms(now - window.wake))
    return min(int(elapsed_ms // interval_ms), total_intervals - 1)


def get_current_interval_progress(config, logs: Sequence, now: datetime) -> IntervalProgress:
    """
    Progress inside the interval containing ``now``.

    The awake window is cut into ``interval_length`` minute slices; the last
    slice is shorter when the window does not divide evenly. Before wake the
    first interval is reported and after sleep the last one, with no time
    remaining. Every interval gets the same share of the daily goal.
    """
    window = _window(config, now)
    interval_ms, total_intervals = _segment(window, config.interval_length)
    index = _interval_index(window, interval_ms, total_intervals, now)

    interval_start = window.wake + timedelta(milliseconds=index * interval_ms)
    interval_end = min(interval_start + timedelta(milliseconds=interval_ms), window.sleep)
    target = config.daily_goal / total_intervals
    current = sum_amounts(get_logs_between(logs, interval_start, interval_end, now))

    return IntervalProgress(
        current_amount=current,
        target_amount=target,
        time_remaining_ms=int(max(0.0, _ms(interval_end - now))),
        interval_index=index,
        total_intervals=total_intervals,
        interval_start=interval_start,
        interval_end=interval_end,
        complete=current >= target,
    )


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------


def get_hydration_score(config, logs: Sequence, now: datetime, scope: Optional[Sequence] = None) -> int:
    """
    Combine goal completion (40), pace (30) and consistency (30) into 0-100.

    ``scope`` selects which logs are scored and defaults to today's logs.
    Pace is measured against the expected intake for ``now``; the ratio is
    capped at 1.2 and then again at 1 for scoring. Consistency is the share
    of intervals so far, current one included, holding at least one log.
    """
    scored = list(scope) if scope is not None else get_filtered_logs(logs, "day", now)
    intake = sum_amounts(scored)
    goal = config.daily_goal

    goal_score = min(intake / goal, 1) * GOAL_WEIGHT if goal > 0 else 0

    expected = get_expected_intake(config, now)
    pace_ratio = min(intake / expected, PACE_RATIO_CAP) if expected > 0 else 1
    pace_score = min(pace_ratio, 1) * PACE_WEIGHT

    window = _window(config, now)
    interval_ms, total_intervals = _segment(window, config.interval_length)
    current_index = _interval_index(window, interval_ms, total_intervals, now)
    stamps = [_to_frame(log.logged_at, now) for log in scored]
    intervals_met = 0
    for i in range(current_index + 1):
        start = window.wake + timedelta(milliseconds=i * interval_ms)
        end = start + timedelta(milliseconds=interval_ms)
        if any(start <= ts < end for ts in stamps):
            intervals_met += 1
    consistency_score = intervals_met / max(current_index + 1, 1) * CONSISTENCY_WEIGHT

    score = round(goal_score + pace_score + consistency_score)
    return int(min(max(score, 0), 100))


def score_label(score: int) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 50:
        return "Moderate"
    if score >= 30:
        return "Imbalanced"
    return "Off Track"


# ---------------------------------------------------------------------------
# Units and goals
# ---------------------------------------------------------------------------


def convert_amount(amount: float, from_unit: str, to_unit: str) -> float:
    """Convert between ounces and millilitres. No rounding is applied."""
    if from_unit == to_unit:
        return amount
    if from_unit == "oz" and to_unit == "ml":
        return amount * ML_PER_OZ
    return amount / ML_PER_OZ


def effective_amount(amount: float, hydration_factor: float) -> float:
    """Volume that counts toward the goal for a beverage of the given factor."""
    return amount * hydration_factor


def recommend_goal(
    sex: Optional[str] = None,
    activity_level: str = "moderate",
    age: Optional[int] = None,
    unit: str = "oz",
) -> GoalRecommendation:
    """
    Suggest a daily goal from the adequate-intake baseline.

    3.7 L for men, 2.7 L for women and 3.2 L otherwise, scaled by activity
    (light 0.85, high 1.15) and reduced 5% past age 65.
    """
    baseline_ml = {"male": 3700.0, "female": 2700.0}.get(sex or "", 3200.0)
    baseline_ml *= {"high": 1.15, "light": 0.85}.get(activity_level, 1.0)
    if age and age > 65:
        baseline_ml *= 0.95
    goal = round(convert_amount(baseline_ml, "ml", unit))
    return GoalRecommendation(daily_goal=goal, unit=unit, baseline_ml=baseline_ml)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def get_progress_snapshot(config, logs: Sequence, now: datetime) -> ProgressSnapshot:
    """Assemble every dashboard metric for one instant."""
    today_logs = get_filtered_logs(logs, "day", now)
    intake = sum_amounts(today_logs)
    expected_range = get_expected_range(config, now)
    hours, minutes = get_time_remaining(config, now)
    score = get_hydration_score(config, logs, now, scope=today_logs)
    return ProgressSnapshot(
        current_intake=intake,
        daily_goal=config.daily_goal,
        unit=config.unit_preference,
        expected_intake=get_expected_intake(config, now),
        expected_range=expected_range,
        on_track=intake >= expected_range.min,
        remaining_amount=max(0, config.daily_goal - intake),
        time_progress=get_time_progress(config, now),
        time_remaining_hours=hours,
        time_remaining_minutes=minutes,
        streak=get_streak(config, logs, now),
        hydration_score=score,
        score_label=score_label(score),
        interval=get_current_interval_progress(config, logs, now),
    )
