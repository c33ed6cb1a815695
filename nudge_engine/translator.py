"""Context-aware translation of agent events into notification drafts."""

from __future__ import annotations

from typing import Any, Callable, Optional

from nudge_engine.schema import Event, NotificationDraft, UserContext


def _as_text(payload: Any, key: str) -> str:
    if isinstance(payload, dict) and key in payload:
        return str(payload[key])
    return "n/a"


def _assignment_deadline(event: Event, context: UserContext) -> NotificationDraft:
    base = f"{_as_text(event.payload, 'task')} for {_as_text(event.payload, 'course')} is approaching."
    if context.stress_level == "high":
        message = f"{base} One step at a time is enough."
    elif context.mode == "focus":
        message = f"{base} Lock in one focused block on it now."
    elif context.energy_level == "low":
        message = f"{base} Start with a 10-minute setup pass."
    else:
        message = f"{base} A short check-in now will keep you ahead."

    priority = event.priority
    if priority != "critical":
        if context.mode == "focus" and context.energy_level == "high" and priority == "medium":
            priority = "high"
        elif context.stress_level == "high" and priority == "high":
            priority = "medium"

    payload = event.payload if isinstance(event.payload, dict) else {}
    metadata = {"itemId": payload["itemId"]} if "itemId" in payload else None
    return NotificationDraft(
        source="assignment-tracker",
        title="Deadline alert",
        message=message,
        priority=priority,
        metadata=metadata,
        url="/companion/?tab=schedule",
    )


def _assignment_overdue(event: Event, context: UserContext) -> NotificationDraft:
    base = f"{_as_text(event.payload, 'task')} for {_as_text(event.payload, 'course')} is now overdue."
    if context.stress_level == "high":
        message = f"{base} No pressure, just confirm: done or still working?"
    elif context.mode == "focus":
        message = f"{base} Quick check-in: is this complete or still in progress?"
    elif context.energy_level == "low":
        message = f"{base} When you have a moment, let me know if this is done."
    else:
        message = f"{base} Mark complete or tell me you're still working on it."

    priority = event.priority
    if context.stress_level == "high" or context.mode == "recovery":
        priority = "medium"

    return NotificationDraft(
        source="assignment-tracker",
        title="Deadline status check",
        message=message,
        priority=priority,
        metadata={"itemId": _as_text(event.payload, "itemId")},
        actions=["complete", "working", "view"],
        url="/companion/?tab=schedule",
    )


def _lecture_reminder(event: Event, context: UserContext) -> NotificationDraft:
    base = f"{_as_text(event.payload, 'title')} starts in {_as_text(event.payload, 'minutesUntil')} min"
    if context.mode == "recovery":
        message = f"{base}. Keep the prep light and easy."
    elif context.mode == "focus":
        message = f"{base}. Wrap current work and transition cleanly."
    else:
        message = f"{base}."

    priority = event.priority
    if context.mode == "focus" and priority == "low":
        priority = "medium"
    elif context.stress_level == "high" and priority == "high":
        priority = "medium"

    return NotificationDraft(source="lecture-plan", title="Lecture reminder", message=message, priority=priority)


def _note_prompt(event: Event, context: UserContext) -> NotificationDraft:
    prompt = _as_text(event.payload, "prompt")
    if context.stress_level == "high":
        message = f"Quick reset: {prompt}"
    elif context.mode == "focus":
        message = f"Capture one concise update: {prompt}"
    else:
        message = prompt

    priority = event.priority
    if context.mode == "focus" and priority == "low":
        priority = "medium"

    return NotificationDraft(source="notes", title="Journal prompt", message=message, priority=priority)


def _food_nudge(event: Event, context: UserContext) -> NotificationDraft:
    return NotificationDraft(
        source="orchestrator",
        title="Nutrition nudge",
        message=_as_text(event.payload, "reminder"),
        priority=event.priority,
    )


def _social_highlight(event: Event, context: UserContext) -> NotificationDraft:
    return NotificationDraft(
        source="orchestrator",
        title="New highlight",
        message=f"{_as_text(event.payload, 'platform')}: {_as_text(event.payload, 'title')}",
        priority=event.priority,
    )


_TRANSLATORS: dict[str, Callable[[Event, UserContext], NotificationDraft]] = {
    "assignment.deadline": _assignment_deadline,
    "assignment.overdue": _assignment_overdue,
    "lecture.reminder": _lecture_reminder,
    "note.prompt": _note_prompt,
    "food.nudge": _food_nudge,
    "social.highlight": _social_highlight,
}


def known_event_types() -> list[str]:
    return sorted(_TRANSLATORS)


def translate(event: Event, context: UserContext) -> Optional[NotificationDraft]:
    """Map *event* to a notification draft; pure, no I/O.

    Unknown event types become a low-priority diagnostic so coverage gaps
    stay visible.
    """

    handler = _TRANSLATORS.get(event.event_type)
    if handler is None:
        return NotificationDraft(
            source="orchestrator",
            title="Unknown event",
            message=f"Unhandled event type: {event.event_type}",
            priority="low",
            metadata={"eventId": event.id, "eventSource": event.source},
        )
    return handler(event, context)
