"""Adaptive sleep planning for the digest scheduler.

Instead of polling on a fixed tick, the scheduler sleeps until the nearest
upcoming delivery slot across the whole population, bounded by a minimum and
maximum interval. Immediate digests depend on accumulating content rather than
a clock target, so any user with them enabled caps the sleep at a short
fixed interval.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Iterable

from smart_digest.models.digest_preference import WEEKDAYS, Cadence
from smart_digest.services.digest_due import (
    DEFAULT_WINDOW_MINUTES,
    MINUTES_PER_DAY,
    DigestConfigError,
    ensure_utc,
    is_slot_pending,
    local_now,
    minutes_until_preferred_time,
    parse_send_time,
)

logger = logging.getLogger(__name__)

MIN_INTERVAL = timedelta(minutes=1)
MAX_INTERVAL = timedelta(minutes=30)
IMMEDIATE_CHECK_INTERVAL = timedelta(minutes=5)


def _minutes_until_weekly(local_time: datetime, send_day: str, pref_hour: int, pref_minute: int) -> int:
    send_day = (send_day or "").lower()
    if send_day not in WEEKDAYS:
        raise DigestConfigError(f"unknown weekday {send_day!r}")
    now_minutes = local_time.hour * 60 + local_time.minute
    target_minutes = pref_hour * 60 + pref_minute
    days_ahead = (WEEKDAYS.index(send_day) - local_time.weekday()) % 7
    if days_ahead == 0 and target_minutes <= now_minutes:
        days_ahead = 7
    return days_ahead * MINUTES_PER_DAY + target_minutes - now_minutes


def minutes_until_next_slot(
    pref, now_utc: datetime, window_minutes: int = DEFAULT_WINDOW_MINUTES
) -> float | None:
    """Minutes until the earliest daily/weekly slot for ``pref``, or None if it has none.

    A slot whose window is still open and has not been delivered today counts
    as 0, so a failed or skipped send is retried before the window closes.
    """
    local_time = local_now(pref, now_utc)
    candidates = []

    if pref.is_enabled(Cadence.DAILY):
        if is_slot_pending(pref, Cadence.DAILY, now_utc, window_minutes):
            candidates.append(0)
        else:
            pref_hour, pref_minute = parse_send_time(pref.daily_send_time)
            candidates.append(
                minutes_until_preferred_time(local_time.hour, local_time.minute, pref_hour, pref_minute)
            )

    if pref.is_enabled(Cadence.WEEKLY):
        if is_slot_pending(pref, Cadence.WEEKLY, now_utc, window_minutes):
            candidates.append(0)
        else:
            pref_hour, pref_minute = parse_send_time(pref.weekly_send_time)
            candidates.append(_minutes_until_weekly(local_time, pref.weekly_send_day, pref_hour, pref_minute))

    if not candidates:
        return None

    minutes = min(candidates)
    paused_until = ensure_utc(pref.paused_until)
    if paused_until is not None and paused_until > ensure_utc(now_utc):
        unpause_minutes = (paused_until - ensure_utc(now_utc)).total_seconds() / 60
        minutes = max(minutes, unpause_minutes)
    return minutes


def next_sleep_duration(
    preferences: Iterable,
    now_utc: datetime,
    *,
    min_interval: timedelta = MIN_INTERVAL,
    max_interval: timedelta = MAX_INTERVAL,
    immediate_interval: timedelta = IMMEDIATE_CHECK_INTERVAL,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> timedelta:
    """Compute how long the scheduler should sleep before its next pass."""
    min_minutes = math.inf
    has_immediate_users = False

    for pref in preferences:
        if pref.is_enabled(Cadence.IMMEDIATE):
            has_immediate_users = True
        try:
            minutes = minutes_until_next_slot(pref, now_utc, window_minutes)
        except DigestConfigError as e:
            logger.warning(f"Ignoring misconfigured digest preference for user {pref.user_id} while planning: {e}")
            continue
        if minutes is not None:
            min_minutes = min(min_minutes, minutes)

    if math.isinf(min_minutes):
        planned = max_interval
    else:
        planned = timedelta(minutes=min_minutes)

    if has_immediate_users:
        planned = min(planned, immediate_interval)

    return max(min_interval, min(planned, max_interval))
