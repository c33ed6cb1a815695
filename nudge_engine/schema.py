"""Core data schema for events, notifications and reminder state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

PRIORITIES = ("low", "medium", "high", "critical")
RECURRENCES = ("daily", "weekly", "monthly")


def priority_value(priority: str) -> int:
    """Position of *priority* in the total order low < medium < high < critical."""

    try:
        return PRIORITIES.index(priority)
    except ValueError as exc:
        raise ValueError(f"Unknown priority '{priority}'") from exc


def make_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


@dataclass(frozen=True)
class Event:
    """Immutable record emitted by a producer agent."""

    id: str
    source: str
    event_type: str
    priority: str
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationDraft:
    """Notification content before it is stamped with an id and timestamp."""

    source: str
    title: str
    message: str
    priority: str
    metadata: Optional[dict[str, Any]] = None
    actions: Optional[list[str]] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    """User-visible notification."""

    id: str
    source: str
    title: str
    message: str
    priority: str
    timestamp: datetime
    metadata: Optional[dict[str, Any]] = None
    actions: Optional[list[str]] = None
    url: Optional[str] = None

    @classmethod
    def from_draft(cls, draft: NotificationDraft, timestamp: datetime) -> "Notification":
        return cls(
            id=make_id("notif"),
            source=draft.source,
            title=draft.title,
            message=draft.message,
            priority=draft.priority,
            timestamp=timestamp,
            metadata=draft.metadata,
            actions=draft.actions,
            url=draft.url,
        )


@dataclass
class QuietHours:
    enabled: bool = False
    start_hour: int = 22
    end_hour: int = 7


@dataclass
class NotificationPreferences:
    """User-level dispatch preferences, consulted at delivery time."""

    quiet_hours: QuietHours = field(default_factory=QuietHours)
    minimum_priority: str = "low"
    allow_critical_in_quiet_hours: bool = True
    category_toggles: dict[str, bool] = field(
        default_factory=lambda: {
            "notes": True,
            "lecture-plan": True,
            "assignment-tracker": True,
            "orchestrator": True,
        }
    )


@dataclass
class ScheduledNotification:
    """Queue entry holding a notification until its delivery time."""

    id: str
    notification: NotificationDraft
    scheduled_for: datetime
    created_at: datetime
    event_id: Optional[str] = None
    recurrence: Optional[str] = None
    category: Optional[str] = None
    anchor_day: Optional[int] = None


@dataclass
class TrackedItem:
    """Time-bound item (deadline) with a stored baseline priority."""

    id: str
    title: str
    due_at: datetime
    priority: str = "medium"
    completed: bool = False
    course: Optional[str] = None


@dataclass
class DeadlineReminderState:
    item_id: str
    reminder_count: int = 0
    last_reminder_at: Optional[datetime] = None
    last_confirmation_at: Optional[datetime] = None
    last_confirmed_completed: Optional[bool] = None


@dataclass
class AgentState:
    name: str
    status: str = "idle"
    last_run_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserContext:
    energy_level: str = "medium"
    stress_level: str = "medium"
    mode: str = "balanced"


@dataclass(frozen=True)
class CalendarEvent:
    start_time: datetime
    duration_minutes: int
    title: str = ""


@dataclass(frozen=True)
class ScheduleGap:
    start_time: datetime
    end_time: datetime
    duration_minutes: int


@dataclass(frozen=True)
class PushSubscription:
    endpoint: str
    p256dh: str = ""
    auth: str = ""
