from datetime import datetime, timedelta, timezone

from nudge_engine.escalation import escalate_priority, escalated_item, reminder_due
from nudge_engine.schema import PRIORITIES, DeadlineReminderState, TrackedItem, priority_value

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def test_escalation_never_lowers_priority():
    for stored in PRIORITIES:
        for hours in (-5, 0, 0.5, 12, 24, 30, 48, 60, 72, 100):
            escalated = escalate_priority(stored, False, NOW + timedelta(hours=hours), NOW)
            assert priority_value(escalated) >= priority_value(stored)


def test_overdue_items_are_critical():
    for stored in PRIORITIES:
        assert escalate_priority(stored, False, NOW, NOW) == "critical"
        assert escalate_priority(stored, False, NOW - timedelta(days=3), NOW) == "critical"


def due(hours):
    return NOW + timedelta(hours=hours)


def test_escalation_bands():
    assert escalate_priority("medium", False, due(10), NOW) == "high"
    assert escalate_priority("high", False, due(10), NOW) == "critical"
    assert escalate_priority("low", False, due(36), NOW) == "medium"
    assert escalate_priority("high", False, due(36), NOW) == "high"
    assert escalate_priority("low", False, due(60), NOW) == "medium"
    assert escalate_priority("medium", False, due(60), NOW) == "medium"
    assert escalate_priority("low", False, due(100), NOW) == "low"


def test_completed_items_keep_stored_priority():
    assert escalate_priority("low", True, NOW - timedelta(hours=1), NOW) == "low"


def test_escalated_item_leaves_input_untouched():
    item = TrackedItem("a", "Essay", NOW + timedelta(hours=5), "medium")
    copy = escalated_item(item, NOW)
    assert copy.priority == "high"
    assert item.priority == "medium"


def test_reminder_due_respects_cooldown():
    item = TrackedItem("a", "Essay", NOW - timedelta(hours=1))
    assert reminder_due(item, None, NOW, 180)

    state = DeadlineReminderState("a", reminder_count=1, last_reminder_at=NOW - timedelta(minutes=179))
    assert not reminder_due(item, state, NOW, 180)

    state.last_reminder_at = NOW - timedelta(minutes=180)
    assert reminder_due(item, state, NOW, 180)


def test_reminder_not_due_for_future_or_completed_items():
    assert not reminder_due(TrackedItem("a", "x", NOW + timedelta(minutes=1)), None, NOW, 180)
    assert not reminder_due(TrackedItem("b", "x", NOW - timedelta(hours=1), completed=True), None, NOW, 180)
