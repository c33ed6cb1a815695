from datetime import timedelta

import pytest

from nudge_engine.exceptions import StoreError
from nudge_engine.schema import NotificationDraft, PushSubscription, TrackedItem
from nudge_engine.settings import StoreConfig
from nudge_engine.store import RuntimeStore


def draft(title="Reminder", priority="low"):
    return NotificationDraft(source="notes", title=title, message="m", priority=priority)


async def add_overdue_pair(store, clock):
    due = clock.now.replace(hour=9, minute=0)
    await store.add_item(TrackedItem("a", "Essay", due, "medium"))
    await store.add_item(TrackedItem("b", "Lab", due, "low"))


@pytest.mark.asyncio
async def test_cooldown_scenario(store, clock):
    await add_overdue_pair(store, clock)

    clock.now = clock.now.replace(hour=9, minute=5)
    assert await store.claim_reminder("a", clock.now, 180) is not None

    clock.now = clock.now.replace(hour=9, minute=10)
    due = await store.get_overdue_items_requiring_reminder(clock.now, 180)
    assert [item.id for item in due] == ["b"]
    assert await store.claim_reminder("a", clock.now, 180) is None

    clock.now = clock.now.replace(hour=12, minute=10)
    state = await store.claim_reminder("a", clock.now, 180)
    assert state.reminder_count == 2
    assert state.last_reminder_at == clock.now


@pytest.mark.asyncio
async def test_overdue_query_is_idempotent(store, clock):
    await add_overdue_pair(store, clock)
    clock.advance(timedelta(minutes=30))
    first = await store.get_overdue_items_requiring_reminder(clock.now)
    second = await store.get_overdue_items_requiring_reminder(clock.now)
    assert first == second
    assert all(item.priority == "critical" for item in first)


@pytest.mark.asyncio
async def test_record_reminder_unknown_item(store):
    assert await store.record_reminder("missing") is None


@pytest.mark.asyncio
async def test_confirm_status_keeps_reminder_fields(store, clock):
    await add_overdue_pair(store, clock)
    reminded = await store.record_reminder("a", clock.now)

    item, state = await store.confirm_status("a", True, clock.now + timedelta(minutes=5))
    assert item.completed
    assert state.last_confirmed_completed is True
    assert state.last_reminder_at == reminded.last_reminder_at
    assert state.reminder_count == 1

    _, earlier = await store.confirm_status("a", False, clock.now)
    assert earlier.last_confirmation_at == clock.now + timedelta(minutes=5)
    assert earlier.last_confirmed_completed is False
    assert await store.confirm_status("missing", True) is None


@pytest.mark.asyncio
async def test_delete_item_drops_reminder_state(store, clock):
    await add_overdue_pair(store, clock)
    await store.record_reminder("a")
    assert await store.delete_item("a")
    assert await store.get_reminder_state("a") is None
    assert not await store.delete_item("a")


@pytest.mark.asyncio
async def test_schedule_round_trip(store, clock):
    deliver_at = clock.now + timedelta(hours=2)
    entry = await store.schedule_notification(draft(), deliver_at, event_id="evt-1", recurrence="daily")

    due = await store.get_due_notifications(deliver_at)
    assert len(due) == 1
    assert due[0].notification == draft()
    assert due[0].scheduled_for == deliver_at
    assert (due[0].event_id, due[0].recurrence) == ("evt-1", "daily")
    assert due[0].id == entry.id
    assert await store.get_due_notifications(deliver_at - timedelta(seconds=1)) == []


@pytest.mark.asyncio
async def test_schedule_clamps_past_times_and_rejects_unknown_recurrence(store, clock):
    entry = await store.schedule_notification(draft(), clock.now - timedelta(hours=1))
    assert entry.scheduled_for == entry.created_at == clock.now
    assert await store.schedule_notification(draft(), clock.now, recurrence="hourly") is None


@pytest.mark.asyncio
async def test_due_notifications_ascending(store, clock):
    for minutes, title in ((30, "c"), (10, "a"), (20, "b")):
        await store.schedule_notification(draft(title), clock.now + timedelta(minutes=minutes))
    due = await store.get_due_notifications(clock.now + timedelta(hours=1))
    assert [entry.notification.title for entry in due] == ["a", "b", "c"]
    assert await store.remove_scheduled(due[0].id)
    assert not await store.remove_scheduled(due[0].id)


@pytest.mark.asyncio
async def test_notification_history_is_bounded(clock):
    store = RuntimeStore(StoreConfig(max_notifications=3), clock=clock)
    seen = []
    unsubscribe = store.on_notification(seen.append)
    for index in range(5):
        await store.push_notification(draft(str(index)))
    unsubscribe()
    await store.push_notification(draft("late"))

    assert [n.title for n in await store.get_notifications()] == ["late", "4", "3"]
    assert len(seen) == 5


@pytest.mark.asyncio
async def test_snooze_requeues_as_direct(store, clock):
    notification = await store.push_notification(draft("Check in"))
    entry = await store.snooze_notification(notification.id, minutes=15)
    assert entry.scheduled_for == clock.now + timedelta(minutes=15)
    assert entry.category == "direct"
    assert await store.snooze_notification("unknown") is None


@pytest.mark.asyncio
async def test_mutes_reject_inverted_window(store, clock):
    assert await store.create_suggestion_mute(clock.now, clock.now) is None
    window = (clock.now, clock.now + timedelta(hours=1))
    assert await store.create_suggestion_mute(*window) == window
    assert await store.get_active_mutes(clock.now) == [window]
    assert await store.get_active_mutes(clock.now + timedelta(hours=2)) == []


@pytest.mark.asyncio
async def test_update_preferences_patch_and_validation(store):
    prefs = await store.update_preferences(quiet_hours={"enabled": True}, category_toggles={"notes": False})
    assert prefs.quiet_hours.enabled
    assert prefs.quiet_hours.start_hour == 22
    assert prefs.category_toggles["notes"] is False
    assert prefs.category_toggles["orchestrator"] is True

    with pytest.raises(ValueError):
        await store.update_preferences(minimum_priority="urgent")
    with pytest.raises(ValueError):
        await store.update_preferences(quiet_hours={"start_hour": 24})
    assert (await store.get_preferences()).minimum_priority == "low"


@pytest.mark.asyncio
async def test_snapshot_round_trip(tmp_path, store, clock):
    await add_overdue_pair(store, clock)
    await store.record_reminder("a", clock.now)
    await store.schedule_notification(draft(), clock.now + timedelta(hours=1), recurrence="weekly")
    await store.schedule_notification(draft(), clock.now.replace(day=31), recurrence="monthly")
    await store.add_subscription(PushSubscription("https://push.example/1", "key", "secret"))
    await store.update_preferences(minimum_priority="medium")
    path = await store.save(tmp_path / "snapshot.json")

    restored = RuntimeStore(clock=clock)
    assert await restored.load(path)
    assert await restored.list_items(clock.now) == await store.list_items(clock.now)
    assert await restored.get_reminder_state("a") == await store.get_reminder_state("a")
    assert await restored.get_scheduled() == await store.get_scheduled()
    assert [entry.anchor_day for entry in await restored.get_scheduled()] == [None, 31]
    assert await restored.get_subscriptions() == await store.get_subscriptions()
    assert (await restored.get_preferences()).minimum_priority == "medium"


@pytest.mark.asyncio
async def test_snapshot_errors(tmp_path, store):
    assert not await store.load(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        await store.load(broken)

    with pytest.raises(StoreError):
        await store.save()
