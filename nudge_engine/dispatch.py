"""Dispatch gate deciding whether a notification may be shown now."""

from __future__ import annotations

from datetime import datetime
from typing import Union

from nudge_engine.schema import (
    Notification,
    NotificationDraft,
    NotificationPreferences,
    QuietHours,
    priority_value,
)


def is_in_quiet_hours(quiet_hours: QuietHours, now: datetime) -> bool:
    """Check the hour of *now* against a window that may wrap past midnight."""

    hour = now.hour
    start, end = quiet_hours.start_hour, quiet_hours.end_hour
    if start == end:
        return True
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def should_dispatch(
    notification: Union[Notification, NotificationDraft],
    preferences: NotificationPreferences,
    now: datetime,
) -> bool:
    """Single authority for whether the user may see *notification* at *now*."""

    if not preferences.category_toggles.get(notification.source, True):
        return False

    if priority_value(notification.priority) < priority_value(preferences.minimum_priority):
        return False

    if preferences.quiet_hours.enabled and is_in_quiet_hours(preferences.quiet_hours, now):
        return preferences.allow_critical_in_quiet_hours and notification.priority == "critical"

    return True
