"""Async runtime store for notifications, reminder state and the scheduled queue.

All state lives in memory behind one ``asyncio.Lock`` so sweeps that race on
the scheduled queue or reminder table cannot lose updates. ``save``/``load``
persist the durable entities as a JSON snapshot.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from copy import deepcopy
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Optional

from nudge_engine.escalation import escalated_item, reminder_due
from nudge_engine.exceptions import StoreError
from nudge_engine.metrics import DeliveryMetrics
from nudge_engine.schema import (
    PRIORITIES,
    RECURRENCES,
    AgentState,
    DeadlineReminderState,
    Event,
    Notification,
    NotificationDraft,
    NotificationPreferences,
    PushSubscription,
    QuietHours,
    ScheduledNotification,
    TrackedItem,
    UserContext,
    make_id,
)
from nudge_engine.settings import StoreConfig

LOGGER = logging.getLogger("nudge_engine.store")

NotificationListener = Callable[[Notification], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuntimeStore:
    """In-process store shared by the orchestrator sweeps."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        delivery_metrics: Optional[DeliveryMetrics] = None,
    ) -> None:
        self._config = config or StoreConfig()
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()

        self._notifications: Deque[Notification] = deque(maxlen=self._config.max_notifications)
        self._events: Deque[Event] = deque(maxlen=self._config.max_events)
        self._listeners: list[NotificationListener] = []
        self._agent_states: dict[str, AgentState] = {}
        self._preferences = NotificationPreferences()
        self._user_context = UserContext()
        self._items: dict[str, TrackedItem] = {}
        self._reminders: dict[str, DeadlineReminderState] = {}
        self._scheduled: dict[str, ScheduledNotification] = {}
        self._mutes: list[tuple[datetime, datetime]] = []
        self._subscriptions: dict[str, PushSubscription] = {}
        self.delivery_metrics = delivery_metrics or DeliveryMetrics()

    # notifications -----------------------------------------------------

    def on_notification(self, listener: NotificationListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def push_notification(self, draft: NotificationDraft, now: Optional[datetime] = None) -> Notification:
        notification = Notification.from_draft(draft, now or self._clock())
        async with self._lock:
            self._notifications.append(notification)
        for listener in list(self._listeners):
            listener(notification)
        return notification

    async def get_notifications(self) -> list[Notification]:
        """Notification history, newest first."""
        async with self._lock:
            return list(reversed(self._notifications))

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        async with self._lock:
            for notification in self._notifications:
                if notification.id == notification_id:
                    return notification
        return None

    # events and agents -------------------------------------------------

    async def record_event(self, event: Event) -> None:
        async with self._lock:
            self._events.append(event)
            state = self._agent_states.setdefault(event.source, AgentState(name=event.source))
            state.last_run_at = event.timestamp

    async def get_events(self) -> list[Event]:
        async with self._lock:
            return list(reversed(self._events))

    def mark_agent_running(self, name: str) -> None:
        state = self._agent_states.setdefault(name, AgentState(name=name))
        state.status = "running"
        state.last_run_at = self._clock()

    def mark_agent_idle(self, name: str) -> None:
        self._agent_states.setdefault(name, AgentState(name=name)).status = "idle"

    def mark_agent_error(self, name: str) -> None:
        self._agent_states.setdefault(name, AgentState(name=name)).status = "error"

    def get_agent_states(self) -> list[AgentState]:
        return [replace(state) for _, state in sorted(self._agent_states.items())]

    # preferences and context -------------------------------------------

    async def get_preferences(self) -> NotificationPreferences:
        async with self._lock:
            return deepcopy(self._preferences)

    async def update_preferences(
        self,
        *,
        quiet_hours: Optional[dict[str, Any]] = None,
        minimum_priority: Optional[str] = None,
        allow_critical_in_quiet_hours: Optional[bool] = None,
        category_toggles: Optional[dict[str, bool]] = None,
    ) -> NotificationPreferences:
        """Apply a partial update; unspecified fields keep their value."""
        if minimum_priority is not None and minimum_priority not in PRIORITIES:
            raise ValueError(f"Unknown priority '{minimum_priority}'")

        async with self._lock:
            current = self._preferences
            quiet = asdict(current.quiet_hours)
            quiet.update(quiet_hours or {})
            for key in ("start_hour", "end_hour"):
                if not 0 <= int(quiet[key]) <= 23:
                    raise ValueError(f"{key} must be between 0 and 23")
            toggles = dict(current.category_toggles)
            toggles.update(category_toggles or {})
            self._preferences = NotificationPreferences(
                quiet_hours=QuietHours(
                    enabled=bool(quiet["enabled"]),
                    start_hour=int(quiet["start_hour"]),
                    end_hour=int(quiet["end_hour"]),
                ),
                minimum_priority=minimum_priority or current.minimum_priority,
                allow_critical_in_quiet_hours=(
                    current.allow_critical_in_quiet_hours
                    if allow_critical_in_quiet_hours is None
                    else allow_critical_in_quiet_hours
                ),
                category_toggles=toggles,
            )
            return deepcopy(self._preferences)

    async def get_user_context(self) -> UserContext:
        async with self._lock:
            return self._user_context

    async def set_user_context(self, **patch: str) -> UserContext:
        async with self._lock:
            self._user_context = replace(self._user_context, **patch)
            return self._user_context

    # tracked items -----------------------------------------------------

    async def add_item(self, item: TrackedItem) -> TrackedItem:
        if item.priority not in PRIORITIES:
            raise ValueError(f"Unknown priority '{item.priority}'")
        async with self._lock:
            self._items[item.id] = replace(item)
            return replace(item)

    async def get_item(
        self, item_id: str, now: Optional[datetime] = None, escalate: bool = True
    ) -> Optional[TrackedItem]:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            return escalated_item(item, now or self._clock()) if escalate else replace(item)

    async def list_items(self, now: Optional[datetime] = None, escalate: bool = True) -> list[TrackedItem]:
        reference = now or self._clock()
        async with self._lock:
            items = sorted(self._items.values(), key=lambda item: item.due_at)
            return [escalated_item(item, reference) if escalate else replace(item) for item in items]

    async def delete_item(self, item_id: str) -> bool:
        async with self._lock:
            self._reminders.pop(item_id, None)
            return self._items.pop(item_id, None) is not None

    # reminders ---------------------------------------------------------

    async def get_reminder_state(self, item_id: str) -> Optional[DeadlineReminderState]:
        async with self._lock:
            state = self._reminders.get(item_id)
            return replace(state) if state else None

    async def get_all_reminder_states(self) -> list[DeadlineReminderState]:
        async with self._lock:
            return [replace(state) for state in self._reminders.values()]

    async def get_overdue_items_requiring_reminder(
        self, now: Optional[datetime] = None, cooldown_minutes: float = 180
    ) -> list[TrackedItem]:
        """Incomplete, past-due items never reminded or reminded before the cooldown."""
        reference = now or self._clock()
        async with self._lock:
            due = [
                item
                for item in self._items.values()
                if reminder_due(item, self._reminders.get(item.id), reference, cooldown_minutes)
            ]
            return [escalated_item(item, reference) for item in sorted(due, key=lambda item: item.due_at)]

    def _record_reminder_locked(self, item_id: str, at: datetime) -> DeadlineReminderState:
        existing = self._reminders.get(item_id) or DeadlineReminderState(item_id=item_id)
        state = replace(existing, reminder_count=existing.reminder_count + 1, last_reminder_at=at)
        self._reminders[item_id] = state
        return replace(state)

    async def record_reminder(self, item_id: str, at: Optional[datetime] = None) -> Optional[DeadlineReminderState]:
        async with self._lock:
            if item_id not in self._items:
                return None
            return self._record_reminder_locked(item_id, at or self._clock())

    async def claim_reminder(
        self, item_id: str, now: Optional[datetime] = None, cooldown_minutes: float = 180
    ) -> Optional[DeadlineReminderState]:
        """Check the cooldown and record a reminder in one critical section."""
        reference = now or self._clock()
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or not reminder_due(item, self._reminders.get(item_id), reference, cooldown_minutes):
                return None
            return self._record_reminder_locked(item_id, reference)

    async def confirm_status(
        self, item_id: str, completed: bool, at: Optional[datetime] = None
    ) -> Optional[tuple[TrackedItem, DeadlineReminderState]]:
        """Record the user's own statement about an item's completion."""
        reference = at or self._clock()
        async with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            item = replace(item, completed=completed)
            self._items[item_id] = item

            existing = self._reminders.get(item_id) or DeadlineReminderState(item_id=item_id)
            confirmed_at = reference
            if existing.last_confirmation_at is not None and existing.last_confirmation_at > reference:
                confirmed_at = existing.last_confirmation_at
            state = replace(existing, last_confirmation_at=confirmed_at, last_confirmed_completed=completed)
            self._reminders[item_id] = state
            return escalated_item(item, reference), replace(state)

    # scheduled queue ---------------------------------------------------

    async def schedule_notification(
        self,
        draft: NotificationDraft,
        deliver_at: datetime,
        event_id: Optional[str] = None,
        recurrence: Optional[str] = None,
        category: Optional[str] = None,
        anchor_day: Optional[int] = None,
    ) -> Optional[ScheduledNotification]:
        """Queue *draft* for *deliver_at*; None for an unknown recurrence rule.

        Monthly entries remember their day of month in ``anchor_day`` so a clamp
        to a short month does not carry into later months.
        """
        if recurrence is not None and recurrence not in RECURRENCES:
            LOGGER.warning("Rejected scheduled notification with recurrence %r", recurrence)
            return None

        created_at = self._clock()
        scheduled_for = max(deliver_at, created_at)
        if recurrence == "monthly" and anchor_day is None:
            anchor_day = scheduled_for.day
        entry = ScheduledNotification(
            id=make_id("sched-notif"),
            notification=draft,
            scheduled_for=scheduled_for,
            created_at=created_at,
            event_id=event_id,
            recurrence=recurrence,
            category=category,
            anchor_day=anchor_day,
        )
        async with self._lock:
            self._scheduled[entry.id] = entry
        return replace(entry)

    async def get_due_notifications(self, now: Optional[datetime] = None) -> list[ScheduledNotification]:
        """Entries with ``scheduled_for <= now``, earliest first."""
        reference = now or self._clock()
        async with self._lock:
            due = [entry for entry in self._scheduled.values() if entry.scheduled_for <= reference]
        return [replace(entry) for entry in sorted(due, key=lambda entry: entry.scheduled_for)]

    async def get_scheduled(self) -> list[ScheduledNotification]:
        async with self._lock:
            entries = sorted(self._scheduled.values(), key=lambda entry: entry.scheduled_for)
            return [replace(entry) for entry in entries]

    async def remove_scheduled(self, scheduled_id: str) -> bool:
        async with self._lock:
            return self._scheduled.pop(scheduled_id, None) is not None

    async def snooze_notification(
        self, notification_id: str, minutes: float = 30
    ) -> Optional[ScheduledNotification]:
        """Re-queue a delivered notification *minutes* from now."""
        notification = await self.get_notification(notification_id)
        if notification is None:
            return None
        draft = NotificationDraft(
            source=notification.source,
            title=notification.title,
            message=notification.message,
            priority=notification.priority,
            metadata=notification.metadata,
            actions=notification.actions,
            url=notification.url,
        )
        return await self.schedule_notification(
            draft, self._clock() + timedelta(minutes=minutes), category="direct"
        )

    # suggestion mutes --------------------------------------------------

    async def create_suggestion_mute(self, start: datetime, end: datetime) -> Optional[tuple[datetime, datetime]]:
        """Block [start, end) for timed delivery; rejects end <= start."""
        if end <= start:
            return None
        async with self._lock:
            self._mutes.append((start, end))
            return start, end

    async def get_active_mutes(self, now: Optional[datetime] = None) -> list[tuple[datetime, datetime]]:
        reference = now or self._clock()
        async with self._lock:
            self._mutes = [mute for mute in self._mutes if mute[1] >= reference - timedelta(days=7)]
            return sorted(mute for mute in self._mutes if mute[1] >= reference)

    # push subscriptions ------------------------------------------------

    async def add_subscription(self, subscription: PushSubscription) -> PushSubscription:
        async with self._lock:
            self._subscriptions[subscription.endpoint] = subscription
            return subscription

    async def get_subscriptions(self) -> list[PushSubscription]:
        async with self._lock:
            return list(self._subscriptions.values())

    async def remove_subscription(self, endpoint: str) -> bool:
        async with self._lock:
            return self._subscriptions.pop(endpoint, None) is not None

    # snapshot ----------------------------------------------------------

    async def save(self, path: Optional[Path] = None) -> Path:
        """Write durable entities to a JSON snapshot."""
        target = self._snapshot_path(path)
        async with self._lock:
            payload = {
                "preferences": asdict(self._preferences),
                "items": [_item_to_json(item) for item in self._items.values()],
                "reminders": [_reminder_to_json(state) for state in self._reminders.values()],
                "scheduled": [_scheduled_to_json(entry) for entry in self._scheduled.values()],
                "subscriptions": [asdict(sub) for sub in self._subscriptions.values()],
            }
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Unable to write snapshot {target}: {exc}") from exc
        return target

    async def load(self, path: Optional[Path] = None) -> bool:
        """Replace durable entities from a snapshot; False when none exists."""
        target = self._snapshot_path(path)
        if not target.exists():
            return False
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Unable to read snapshot {target}: {exc}") from exc

        try:
            prefs = payload.get("preferences") or {}
            preferences = NotificationPreferences(
                quiet_hours=QuietHours(**prefs.get("quiet_hours", {})),
                minimum_priority=prefs.get("minimum_priority", "low"),
                allow_critical_in_quiet_hours=prefs.get("allow_critical_in_quiet_hours", True),
                category_toggles=prefs.get("category_toggles") or NotificationPreferences().category_toggles,
            )
            items = [_item_from_json(raw) for raw in payload.get("items", [])]
            reminders = [_reminder_from_json(raw) for raw in payload.get("reminders", [])]
            scheduled = [_scheduled_from_json(raw) for raw in payload.get("scheduled", [])]
            subscriptions = [PushSubscription(**raw) for raw in payload.get("subscriptions", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed snapshot {target}: {exc}") from exc

        async with self._lock:
            self._preferences = preferences
            self._items = {item.id: item for item in items}
            self._reminders = {state.item_id: state for state in reminders}
            self._scheduled = {entry.id: entry for entry in scheduled}
            self._subscriptions = {sub.endpoint: sub for sub in subscriptions}
        LOGGER.info("Loaded snapshot %s (%d scheduled, %d items)", target, len(scheduled), len(items))
        return True

    def _snapshot_path(self, path: Optional[Path]) -> Path:
        if path is not None:
            return path
        if self._config.snapshot_path:
            return Path(self._config.snapshot_path)
        raise StoreError("No snapshot path configured")


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _item_to_json(item: TrackedItem) -> dict:
    payload = asdict(item)
    payload["due_at"] = _dt(item.due_at)
    return payload


def _item_from_json(raw: dict) -> TrackedItem:
    return TrackedItem(**{**raw, "due_at": _parse_dt(raw["due_at"])})


def _reminder_to_json(state: DeadlineReminderState) -> dict:
    payload = asdict(state)
    payload["last_reminder_at"] = _dt(state.last_reminder_at)
    payload["last_confirmation_at"] = _dt(state.last_confirmation_at)
    return payload


def _reminder_from_json(raw: dict) -> DeadlineReminderState:
    return DeadlineReminderState(
        item_id=raw["item_id"],
        reminder_count=int(raw.get("reminder_count", 0)),
        last_reminder_at=_parse_dt(raw.get("last_reminder_at")),
        last_confirmation_at=_parse_dt(raw.get("last_confirmation_at")),
        last_confirmed_completed=raw.get("last_confirmed_completed"),
    )


def _scheduled_to_json(entry: ScheduledNotification) -> dict:
    payload = asdict(entry)
    payload["scheduled_for"] = _dt(entry.scheduled_for)
    payload["created_at"] = _dt(entry.created_at)
    return payload


def _scheduled_from_json(raw: dict) -> ScheduledNotification:
    return ScheduledNotification(
        id=raw["id"],
        notification=NotificationDraft(**raw["notification"]),
        scheduled_for=_parse_dt(raw["scheduled_for"]),
        created_at=_parse_dt(raw["created_at"]),
        event_id=raw.get("event_id"),
        recurrence=raw.get("recurrence"),
        category=raw.get("category"),
        anchor_day=raw.get("anchor_day"),
    )
