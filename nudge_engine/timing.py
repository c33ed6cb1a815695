"""Smart timing: free-gap detection and candidate delivery time scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Optional

import numpy as np

from nudge_engine.schema import CalendarEvent, DeadlineReminderState, ScheduleGap, UserContext

MIN_GAP_MINUTES = 30
DEFAULT_PEAK_HOURS = [9, 10, 14, 15, 16, 19, 20]


@dataclass
class OptimalTimeContext:
    """Inputs for choosing when a deferrable notification should land."""

    current_time: datetime
    user_context: UserContext
    schedule_events: list[CalendarEvent] = field(default_factory=list)
    reminder_history: list[DeadlineReminderState] = field(default_factory=list)


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def calculate_schedule_gaps(events: list[CalendarEvent], start: datetime, end: datetime) -> list[ScheduleGap]:
    """Free windows of at least 30 minutes around the calendar events in [start, end]."""

    relevant = sorted(
        (event for event in events if start <= event.start_time <= end),
        key=lambda event: event.start_time,
    )
    if not relevant:
        return [ScheduleGap(start, end, _minutes_between(start, end))]

    bounds = [(e.start_time, e.start_time + timedelta(minutes=e.duration_minutes)) for e in relevant]
    gaps: list[ScheduleGap] = []

    first_start = bounds[0][0]
    if first_start > start:
        duration = _minutes_between(start, first_start)
        if duration >= MIN_GAP_MINUTES:
            gaps.append(ScheduleGap(start, first_start, duration))

    for (_, current_end), (next_start, _) in zip(bounds, bounds[1:]):
        duration = _minutes_between(current_end, next_start)
        if duration >= MIN_GAP_MINUTES:
            gaps.append(ScheduleGap(current_end, next_start, duration))

    last_end = bounds[-1][1]
    if last_end < end:
        duration = _minutes_between(last_end, end)
        if duration >= MIN_GAP_MINUTES:
            gaps.append(ScheduleGap(last_end, end, duration))

    return gaps


def _local_hour(value: datetime, tz: Optional[tzinfo]) -> int:
    if tz is None or value.tzinfo is None:
        return value.hour
    return value.astimezone(tz).hour


def analyze_completion_patterns(
    history: list[DeadlineReminderState], tz: Optional[tzinfo] = None
) -> list[int]:
    """Hours of day with at least the average number of confirmed completions.

    Confirmation times are bucketed in *tz* when given, so peaks line up with
    the local hours that candidate delivery times are scored on.
    """

    hours = [
        _local_hour(state.last_confirmation_at, tz)
        for state in history
        if state.last_confirmed_completed and state.last_confirmation_at is not None
    ]
    if not hours:
        return list(DEFAULT_PEAK_HOURS)

    counts = np.bincount(np.asarray(hours, dtype=int), minlength=24)
    average = counts[counts > 0].mean()
    peaks = np.flatnonzero(counts >= average)
    return [int(hour) for hour in peaks] or list(DEFAULT_PEAK_HOURS)


def _energy_score(hour: int, energy_level: str) -> int:
    if energy_level == "high":
        if 9 <= hour <= 12:
            return 40
        if 14 <= hour <= 17:
            return 30
        return 20
    if energy_level == "medium":
        if 10 <= hour <= 16:
            return 40
        if 17 <= hour <= 20:
            return 30
        return 15
    if 14 <= hour <= 18:
        return 40
    if 19 <= hour <= 21:
        return 30
    if hour < 10:
        return 5
    return 20


def _peak_score(hour: int, peak_hours: list[int]) -> int:
    if hour in peak_hours:
        return 30
    if hour - 1 in peak_hours or hour + 1 in peak_hours:
        return 15
    return 0


def _mode_score(hours_from_now: float, mode: str) -> int:
    if mode == "focus":
        if hours_from_now <= 0.5:
            return 20
        if hours_from_now <= 2:
            return 15
        return 5
    if mode == "recovery":
        if hours_from_now >= 2:
            return 20
        if hours_from_now >= 1:
            return 10
        return 5
    if 0.5 <= hours_from_now <= 2:
        return 20
    if hours_from_now <= 4:
        return 15
    return 10


def _stress_score(stress_level: str) -> int:
    if stress_level == "low":
        return 10
    if stress_level == "medium":
        return 5
    return 0


def score_notification_time(candidate: datetime, context: OptimalTimeContext, peak_hours: list[int]) -> int:
    """Additive score: energy (0-40), peak hour (0-30), mode (0-20), stress (0-10)."""

    hour = candidate.hour
    hours_from_now = (candidate - context.current_time).total_seconds() / 3600.0
    user = context.user_context
    return (
        _energy_score(hour, user.energy_level)
        + _peak_score(hour, peak_hours)
        + _mode_score(hours_from_now, user.mode)
        + _stress_score(user.stress_level)
    )


def _gap_candidates(gap: ScheduleGap) -> list[datetime]:
    midpoint = gap.start_time + timedelta(seconds=gap.duration_minutes * 30)
    if gap.duration_minutes >= 120:
        return [gap.start_time + timedelta(minutes=15), midpoint, gap.end_time - timedelta(minutes=30)]
    if gap.duration_minutes >= 60:
        return [gap.start_time + timedelta(minutes=10), midpoint]
    return [midpoint]


def calculate_optimal_notification_time(context: OptimalTimeContext, urgent: bool = False) -> datetime:
    """Pick the best-scoring candidate time in the next 24 hours."""

    now = context.current_time
    if urgent:
        return now

    gaps = calculate_schedule_gaps(context.schedule_events, now, now + timedelta(hours=24))
    if not gaps:
        return now

    peak_hours = analyze_completion_patterns(context.reminder_history, now.tzinfo)
    best_time = None
    best_score = -1
    for gap in gaps:
        for candidate in _gap_candidates(gap):
            if candidate < now:
                continue
            score = score_notification_time(candidate, context, peak_hours)
            if score > best_score:
                best_time, best_score = candidate, score

    return best_time if best_time is not None else now
