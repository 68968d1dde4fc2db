from datetime import datetime, timedelta, timezone

from smart_digest.services.digest_planner import (
    IMMEDIATE_CHECK_INTERVAL,
    MAX_INTERVAL,
    MIN_INTERVAL,
    minutes_until_next_slot,
    next_sleep_duration,
)

# 2026-10-19 is a Monday
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def test_planner_sleeps_until_nearest_slot(make_preference):
    prefs = [
        make_preference(user_id="a", daily_send_time="09:05"),
        make_preference(user_id="b", daily_send_time="09:40"),
        make_preference(user_id="c", daily_send_time="09:10"),
    ]
    assert next_sleep_duration(prefs, NOW) == timedelta(minutes=5)


def test_planner_clamps_to_max_interval(make_preference):
    prefs = [make_preference(daily_send_time="15:00")]
    assert next_sleep_duration(prefs, NOW) == MAX_INTERVAL


def test_planner_clamps_to_min_interval(make_preference):
    prefs = [make_preference(daily_send_time="09:01")]
    assert next_sleep_duration(prefs, NOW, min_interval=timedelta(minutes=3)) == timedelta(minutes=3)


def test_planner_with_no_preferences_sleeps_max():
    assert next_sleep_duration([], NOW) == MAX_INTERVAL


def test_immediate_user_caps_sleep(make_preference):
    prefs = [
        make_preference(user_id="a", daily_send_time="15:00"),
        make_preference(user_id="b", daily_digest_enabled=False, immediate_digest_enabled=True),
    ]
    assert next_sleep_duration(prefs, NOW) == IMMEDIATE_CHECK_INTERVAL


def test_immediate_cap_does_not_delay_an_earlier_slot(make_preference):
    prefs = [
        make_preference(user_id="a", daily_send_time="09:02"),
        make_preference(user_id="b", daily_digest_enabled=False, immediate_digest_enabled=True),
    ]
    assert next_sleep_duration(prefs, NOW) == timedelta(minutes=2)


def test_immediate_only_population(make_preference):
    prefs = [make_preference(daily_digest_enabled=False, immediate_digest_enabled=True)]
    assert next_sleep_duration(prefs, NOW) == IMMEDIATE_CHECK_INTERVAL


def test_misconfigured_preference_is_skipped(make_preference):
    prefs = [
        make_preference(user_id="bad", timezone="Nowhere/Special", daily_send_time="09:01"),
        make_preference(user_id="good", daily_send_time="09:10"),
    ]
    assert next_sleep_duration(prefs, NOW) == timedelta(minutes=10)


def test_planner_result_stays_within_bounds(make_preference):
    for send_time in ("00:00", "08:59", "09:00", "09:01", "12:30", "23:59"):
        planned = next_sleep_duration([make_preference(daily_send_time=send_time)], NOW)
        assert MIN_INTERVAL <= planned <= MAX_INTERVAL


def test_minutes_until_weekly_slot(make_preference):
    pref = make_preference(
        daily_digest_enabled=False,
        weekly_digest_enabled=True,
        weekly_send_day="wednesday",
        weekly_send_time="09:00",
    )
    assert minutes_until_next_slot(pref, NOW) == 2 * 24 * 60


def test_minutes_until_weekly_slot_already_passed_this_week(make_preference):
    pref = make_preference(
        daily_digest_enabled=False,
        weekly_digest_enabled=True,
        weekly_send_day="monday",
        weekly_send_time="08:00",
    )
    assert minutes_until_next_slot(pref, NOW) == 7 * 24 * 60 - 60


def test_earliest_of_daily_and_weekly(make_preference):
    pref = make_preference(
        daily_send_time="10:00",
        weekly_digest_enabled=True,
        weekly_send_day="monday",
        weekly_send_time="09:30",
    )
    assert minutes_until_next_slot(pref, NOW) == 30


def test_paused_user_waits_for_unpause(make_preference):
    pref = make_preference(daily_send_time="09:05", paused_until=NOW + timedelta(hours=2))
    assert minutes_until_next_slot(pref, NOW) == 120


def test_immediate_only_user_has_no_slot(make_preference):
    pref = make_preference(daily_digest_enabled=False, immediate_digest_enabled=True)
    assert minutes_until_next_slot(pref, NOW) is None


def test_open_unsent_window_plans_immediate_recheck(make_preference):
    pref = make_preference(daily_send_time="09:00")
    at_0905 = NOW + timedelta(minutes=5)

    assert minutes_until_next_slot(pref, at_0905) == 0
    assert next_sleep_duration([pref], at_0905) == MIN_INTERVAL


def test_delivered_window_plans_next_day(make_preference):
    at_0905 = NOW + timedelta(minutes=5)
    pref = make_preference(daily_send_time="09:00", last_daily_sent_at=NOW)

    assert minutes_until_next_slot(pref, at_0905) == 24 * 60 - 5
    assert next_sleep_duration([pref], at_0905) == MAX_INTERVAL


def test_closed_window_is_not_pending(make_preference):
    pref = make_preference(daily_send_time="08:30")

    assert minutes_until_next_slot(pref, NOW, window_minutes=15) == 24 * 60 - 30


def test_open_weekly_window_is_pending(make_preference):
    pref = make_preference(
        daily_digest_enabled=False,
        weekly_digest_enabled=True,
        weekly_send_day="monday",
        weekly_send_time="08:50",
    )
    assert minutes_until_next_slot(pref, NOW) == 0


def test_paused_user_with_open_window_waits_for_unpause(make_preference):
    pref = make_preference(daily_send_time="09:00", paused_until=NOW + timedelta(minutes=10))
    assert minutes_until_next_slot(pref, NOW) == 10
