from datetime import datetime, timezone

from nudge_engine.dispatch import is_in_quiet_hours, should_dispatch
from nudge_engine.schema import NotificationDraft, NotificationPreferences, QuietHours


def draft(priority="medium", source="assignment-tracker"):
    return NotificationDraft(source=source, title="t", message="m", priority=priority)


def at_hour(hour):
    return datetime(2025, 1, 1, hour, 15, tzinfo=timezone.utc)


def night_preferences(allow_critical=True):
    return NotificationPreferences(
        quiet_hours=QuietHours(enabled=True, start_hour=22, end_hour=7),
        allow_critical_in_quiet_hours=allow_critical,
    )


def test_wrapping_quiet_hours_suppress_non_critical():
    prefs = night_preferences()
    for hour in (22, 23, 0, 3, 6):
        assert not should_dispatch(draft("high"), prefs, at_hour(hour))
        assert should_dispatch(draft("critical"), prefs, at_hour(hour))
    for hour in (7, 12, 21):
        assert should_dispatch(draft("low"), prefs, at_hour(hour))


def test_critical_blocked_when_override_disabled():
    prefs = night_preferences(allow_critical=False)
    assert not should_dispatch(draft("critical"), prefs, at_hour(23))


def test_quiet_hours_disabled_lets_everything_through():
    prefs = NotificationPreferences(quiet_hours=QuietHours(enabled=False, start_hour=22, end_hour=7))
    assert should_dispatch(draft("low"), prefs, at_hour(23))


def test_equal_start_and_end_means_always_quiet():
    window = QuietHours(enabled=True, start_hour=9, end_hour=9)
    assert all(is_in_quiet_hours(window, at_hour(hour)) for hour in range(24))


def test_non_wrapping_window():
    window = QuietHours(enabled=True, start_hour=13, end_hour=15)
    assert is_in_quiet_hours(window, at_hour(13))
    assert is_in_quiet_hours(window, at_hour(14))
    assert not is_in_quiet_hours(window, at_hour(15))


def test_category_toggle_and_minimum_priority():
    prefs = NotificationPreferences(minimum_priority="medium")
    prefs.category_toggles["notes"] = False

    assert not should_dispatch(draft("critical", source="notes"), prefs, at_hour(12))
    assert not should_dispatch(draft("low"), prefs, at_hour(12))
    assert should_dispatch(draft("medium"), prefs, at_hour(12))
    assert should_dispatch(draft("medium", source="custom-source"), prefs, at_hour(12))
