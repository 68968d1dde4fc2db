from datetime import datetime, timedelta, timezone

import pytest

from smart_digest.models.digest_preference import Cadence
from smart_digest.services.digest_due import (
    is_due,
    is_within_delivery_window,
    minutes_until_preferred_time,
)

# 2026-10-19 is a Monday
MONDAY_0900 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int, day: int = 19) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "now,expected",
    [
        (at(9, 0), True),
        (at(9, 14), True),
        (at(8, 59), False),
        (at(9, 15), False),
    ],
)
def test_daily_delivery_window_bounds(make_preference, now, expected):
    pref = make_preference(daily_send_time="09:00")
    assert is_due(pref, Cadence.DAILY, now) is expected


def test_daily_window_uses_local_time(make_preference):
    # America/New_York is UTC-4 in October
    pref = make_preference(timezone="America/New_York", daily_send_time="09:00")
    assert is_due(pref, Cadence.DAILY, at(13, 5)) is True
    assert is_due(pref, Cadence.DAILY, at(9, 5)) is False


def test_custom_window_width(make_preference):
    pref = make_preference(daily_send_time="09:00")
    assert is_due(pref, Cadence.DAILY, at(9, 20), window_minutes=30) is True
    assert is_due(pref, Cadence.DAILY, at(9, 20)) is False


def test_daily_not_due_again_same_local_day(make_preference):
    pref = make_preference(daily_send_time="09:00", last_daily_sent_at=at(9, 1))
    assert is_due(pref, Cadence.DAILY, at(9, 10)) is False


def test_daily_due_when_last_sent_yesterday(make_preference):
    pref = make_preference(daily_send_time="09:00", last_daily_sent_at=at(9, 1, day=18))
    assert is_due(pref, Cadence.DAILY, at(9, 10)) is True


def test_idempotency_uses_local_calendar_day(make_preference):
    # Last send was Oct 18 18:00 in Los Angeles, same UTC date as now
    pref = make_preference(
        timezone="America/Los_Angeles",
        daily_send_time="09:00",
        last_daily_sent_at=at(1, 0),
    )
    assert is_due(pref, Cadence.DAILY, at(16, 5)) is True


def test_naive_last_sent_is_treated_as_utc(make_preference):
    pref = make_preference(
        daily_send_time="09:00",
        last_daily_sent_at=datetime(2026, 10, 19, 9, 1),
    )
    assert is_due(pref, Cadence.DAILY, at(9, 10)) is False


def test_weekly_only_fires_on_send_day(make_preference):
    pref = make_preference(
        daily_digest_enabled=False,
        weekly_digest_enabled=True,
        weekly_send_day="monday",
        weekly_send_time="09:00",
    )
    assert is_due(pref, Cadence.WEEKLY, at(9, 5)) is True
    assert is_due(pref, Cadence.WEEKLY, at(9, 5, day=20)) is False


def test_weekly_send_day_is_case_insensitive(make_preference):
    pref = make_preference(weekly_digest_enabled=True, weekly_send_day="Monday", weekly_send_time="09:00")
    assert is_due(pref, Cadence.WEEKLY, at(9, 5)) is True


def test_weekly_not_due_twice_on_send_day(make_preference):
    pref = make_preference(
        weekly_digest_enabled=True,
        weekly_send_time="09:00",
        last_weekly_sent_at=at(9, 0),
    )
    assert is_due(pref, Cadence.WEEKLY, at(9, 5)) is False


def test_paused_user_is_never_due(make_preference):
    pref = make_preference(
        daily_send_time="09:00",
        immediate_digest_enabled=True,
        paused_until=MONDAY_0900 + timedelta(days=1),
    )
    assert is_due(pref, Cadence.DAILY, at(9, 5)) is False
    assert is_due(pref, Cadence.IMMEDIATE, at(9, 5)) is False


def test_expired_pause_is_ignored(make_preference):
    pref = make_preference(daily_send_time="09:00", paused_until=datetime(2026, 10, 19, 8, 0))
    assert is_due(pref, Cadence.DAILY, at(9, 5)) is True


@pytest.mark.parametrize(
    "now,expected",
    [
        (at(9, 0), True),
        (at(17, 59), True),
        (at(7, 59), False),
        (at(18, 0), False),
    ],
)
def test_immediate_requires_business_hours(make_preference, now, expected):
    pref = make_preference(immediate_digest_enabled=True, business_hours_start=8, business_hours_end=18)
    assert is_due(pref, Cadence.IMMEDIATE, now) is expected


def test_immediate_cooldown(make_preference):
    recent = make_preference(immediate_digest_enabled=True, last_immediate_sent_at=at(8, 30))
    assert is_due(recent, Cadence.IMMEDIATE, at(9, 0)) is False

    older = make_preference(immediate_digest_enabled=True, last_immediate_sent_at=at(7, 30))
    assert is_due(older, Cadence.IMMEDIATE, at(9, 0)) is True

    assert is_due(recent, Cadence.IMMEDIATE, at(9, 0), immediate_cooldown=timedelta(minutes=15)) is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"timezone": "Mars/Olympus_Mons"},
        {"timezone": ""},
        {"daily_send_time": "9am"},
        {"daily_send_time": "25:00"},
    ],
)
def test_misconfigured_daily_preference_is_never_due(make_preference, overrides):
    pref = make_preference(**overrides)
    assert is_due(pref, Cadence.DAILY, at(9, 5)) is False


def test_unknown_weekday_is_never_due(make_preference):
    pref = make_preference(weekly_digest_enabled=True, weekly_send_day="funday", weekly_send_time="09:00")
    assert is_due(pref, Cadence.WEEKLY, at(9, 5)) is False


def test_invalid_timezone_blocks_immediate(make_preference):
    pref = make_preference(timezone="Not/AZone", immediate_digest_enabled=True)
    assert is_due(pref, Cadence.IMMEDIATE, at(9, 5)) is False


def test_window_is_truncated_at_midnight(make_preference):
    pref = make_preference(daily_send_time="23:55")
    assert is_due(pref, Cadence.DAILY, at(23, 58)) is True
    assert is_due(pref, Cadence.DAILY, at(0, 5, day=20)) is False
    assert is_within_delivery_window(0, 5, 23, 55) is False


def test_minutes_until_preferred_time_wraps_past_midnight():
    assert minutes_until_preferred_time(9, 0, 9, 5) == 5
    assert minutes_until_preferred_time(9, 0, 8, 0) == 23 * 60
    assert minutes_until_preferred_time(9, 0, 9, 0) == 24 * 60
