"""Deadline-based priority escalation and reminder cooldown rules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from nudge_engine.schema import DeadlineReminderState, TrackedItem

_BUMP = {"low": "medium", "medium": "high", "high": "critical", "critical": "critical"}


def escalate_priority(stored: str, completed: bool, due_at: datetime, now: datetime) -> str:
    """Return the live priority of a time-bound item.

    Never persisted: the result only depends on the stored baseline and the
    remaining time, so a smaller time-to-due can only raise it.
    """

    if completed:
        return stored

    hours_until_due = (due_at - now).total_seconds() / 3600.0
    if hours_until_due <= 0:
        return "critical"
    if hours_until_due <= 24:
        return _BUMP[stored]
    if hours_until_due <= 48:
        return _BUMP[stored] if stored in ("low", "medium") else stored
    if hours_until_due <= 72 and stored == "low":
        return "medium"
    return stored


def escalated_item(item: TrackedItem, now: datetime) -> TrackedItem:
    """Copy of *item* carrying its escalated priority."""

    priority = escalate_priority(item.priority, item.completed, item.due_at, now)
    if priority == item.priority:
        return item
    return TrackedItem(
        id=item.id,
        title=item.title,
        due_at=item.due_at,
        priority=priority,
        completed=item.completed,
        course=item.course,
    )


def reminder_due(
    item: TrackedItem,
    state: Optional[DeadlineReminderState],
    now: datetime,
    cooldown_minutes: float,
) -> bool:
    """True when an overdue, incomplete item may be reminded again."""

    if item.completed or item.due_at > now:
        return False
    if state is None or state.last_reminder_at is None:
        return True
    cooldown = timedelta(minutes=max(0.0, cooldown_minutes))
    return now - state.last_reminder_at >= cooldown
