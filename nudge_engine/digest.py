"""Batching of due, non-urgent scheduled notifications into one digest."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from nudge_engine.schema import NotificationDraft, ScheduledNotification, priority_value

DIGEST_SOURCE_LABEL = {
    "assignment-tracker": "assignment",
    "lecture-plan": "lecture",
    "notes": "reflection",
    "orchestrator": "companion",
}

SOURCE_DEEP_LINK_TAB = {
    "assignment-tracker": "schedule",
    "lecture-plan": "schedule",
    "notes": "habits",
    "orchestrator": "chat",
}


def resolve_next_digest_window(now: datetime, morning_hour: int, evening_hour: int) -> datetime:
    """Next morning or evening digest slot at or after *now*."""

    morning = now.replace(hour=morning_hour, minute=0, second=0, microsecond=0)
    evening = now.replace(hour=evening_hour, minute=0, second=0, microsecond=0)
    if now <= morning:
        return morning
    if now <= evening:
        return evening
    return morning + timedelta(days=1)


def is_digest_candidate(entry: ScheduledNotification) -> bool:
    if entry.category == "digest":
        return True
    if entry.category == "direct":
        return False
    return entry.notification.priority in ("low", "medium")


def _digest_title(now: datetime) -> str:
    if now.hour < 12:
        return "Morning digest"
    if now.hour >= 17:
        return "Evening digest"
    return "Daily digest"


def _summarize_sources(entries: list[ScheduledNotification]) -> str:
    counts = Counter(
        DIGEST_SOURCE_LABEL.get(entry.notification.source, entry.notification.source) for entry in entries
    )
    return ", ".join(f"{count} {label}{'' if count == 1 else 's'}" for label, count in counts.items())


def _summarize_titles(entries: list[ScheduledNotification]) -> str:
    titles = [entry.notification.title for entry in entries]
    preview = " • ".join(titles[:3])
    if len(titles) <= 3:
        return preview
    return f"{preview} • +{len(titles) - 3} more"


def build_digest_notification(
    entries: list[ScheduledNotification], now: datetime
) -> Optional[NotificationDraft]:
    """Fold *entries* into a single digest draft; None for an empty batch."""

    if not entries:
        return None

    ordered = sorted(entries, key=lambda entry: entry.scheduled_for)
    priority = max((entry.notification.priority for entry in ordered), key=priority_value)
    dominant = Counter(entry.notification.source for entry in ordered).most_common(1)[0][0]
    tab = SOURCE_DEEP_LINK_TAB.get(dominant, "chat")

    return NotificationDraft(
        source="orchestrator",
        title=_digest_title(now),
        message=(
            f"{len(ordered)} non-urgent updates ({_summarize_sources(ordered)}): "
            f"{_summarize_titles(ordered)}"
        ),
        priority=priority,
        actions=["view"],
        url=f"/companion/?tab={tab}",
        metadata={
            "digestCount": len(ordered),
            "digestSources": [entry.notification.source for entry in ordered],
            "scheduledIds": [entry.id for entry in ordered],
        },
    )
