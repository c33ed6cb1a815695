from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from nudge_engine.schema import CalendarEvent, DeadlineReminderState, ScheduleGap, UserContext
from nudge_engine.timing import (
    DEFAULT_PEAK_HOURS,
    OptimalTimeContext,
    analyze_completion_patterns,
    calculate_optimal_notification_time,
    calculate_schedule_gaps,
    score_notification_time,
)


def at(hour, minute=0, day=6):
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


def test_ninety_minute_gap_between_events():
    events = [
        CalendarEvent(at(13), 60, "Lecture"),
        CalendarEvent(at(15, 30), 60, "Lab"),
    ]
    gaps = calculate_schedule_gaps(events, at(14), at(16, 30))
    assert gaps == [ScheduleGap(at(14), at(15, 30), 90)]


def test_no_events_yields_whole_window():
    gaps = calculate_schedule_gaps([], at(9), at(10, 45))
    assert gaps == [ScheduleGap(at(9), at(10, 45), 105)]


def test_short_gaps_are_dropped():
    events = [CalendarEvent(at(9, 10), 30), CalendarEvent(at(10, 0), 30)]
    gaps = calculate_schedule_gaps(events, at(9), at(10, 45))
    assert [gap.duration_minutes for gap in gaps] == []


def test_completion_patterns_default_without_history():
    assert analyze_completion_patterns([]) == DEFAULT_PEAK_HOURS


def test_completion_patterns_pick_busy_hours():
    history = [
        DeadlineReminderState("a", last_confirmation_at=at(9), last_confirmed_completed=True),
        DeadlineReminderState("b", last_confirmation_at=at(9, 30), last_confirmed_completed=True),
        DeadlineReminderState("c", last_confirmation_at=at(18), last_confirmed_completed=True),
        DeadlineReminderState("d", last_confirmation_at=at(20), last_confirmed_completed=False),
    ]
    assert analyze_completion_patterns(history) == [9]


def test_score_bands():
    context = OptimalTimeContext(current_time=at(9), user_context=UserContext())
    # medium energy 10-16 (40) + peak (30) + balanced 0.5-2h (20) + medium stress (5)
    assert score_notification_time(at(10), context, [10]) == 95
    # medium energy after 20 (15) + adjacent peak (15) + balanced >4h (10) + medium stress (5)
    assert score_notification_time(at(22), context, [21]) == 45


def test_urgent_returns_now():
    context = OptimalTimeContext(current_time=at(9), user_context=UserContext())
    assert calculate_optimal_notification_time(context, urgent=True) == at(9)


def test_optimal_time_lands_inside_a_free_gap():
    busy_all_day = [
        CalendarEvent(at(9, 30), 240, "Classes"),
        CalendarEvent(at(15), 60 * 18, "Evening and night"),
    ]
    context = OptimalTimeContext(current_time=at(9), user_context=UserContext(), schedule_events=busy_all_day)
    chosen = calculate_optimal_notification_time(context)
    assert at(13, 30) <= chosen <= at(15)


def test_fully_booked_window_falls_back_to_now():
    context = OptimalTimeContext(
        current_time=at(9),
        user_context=UserContext(),
        schedule_events=[CalendarEvent(at(9), 24 * 60, "Conference")],
    )
    assert calculate_optimal_notification_time(context) == at(9)


def test_completion_patterns_use_the_local_hour():
    kolkata = ZoneInfo("Asia/Kolkata")
    # 04:30 UTC is 10:00 in Kolkata
    history = [
        DeadlineReminderState("a", last_confirmation_at=at(4, 30), last_confirmed_completed=True),
        DeadlineReminderState("b", last_confirmation_at=at(4, 40, day=7), last_confirmed_completed=True),
    ]
    assert analyze_completion_patterns(history, kolkata) == [10]
    assert analyze_completion_patterns(history) == [4]


def test_optimal_time_scores_utc_confirmations_in_local_time():
    kolkata = ZoneInfo("Asia/Kolkata")
    history = [DeadlineReminderState("a", last_confirmation_at=at(4, 30), last_confirmed_completed=True)]
    now = datetime(2025, 1, 6, 9, 0, tzinfo=kolkata)
    context = OptimalTimeContext(current_time=now, user_context=UserContext(), reminder_history=history)
    peak_hours = analyze_completion_patterns(history, now.tzinfo)
    assert score_notification_time(now.replace(hour=10), context, peak_hours) == 95
