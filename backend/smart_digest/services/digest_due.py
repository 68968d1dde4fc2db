"""Due-time evaluation for digest cadences.

All functions here are pure: they take a preference record, a cadence and the
current UTC instant and decide whether that cadence should fire now. Any
configuration problem (unknown timezone, malformed send time or weekday) makes
the preference never-due rather than raising.
"""
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from smart_digest.models.digest_preference import (
    SEND_TIME_FIELDS,
    WEEKDAYS,
    Cadence,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 15
DEFAULT_IMMEDIATE_COOLDOWN = timedelta(hours=1)
MINUTES_PER_DAY = 24 * 60


class DigestConfigError(ValueError):
    """A preference value the evaluator cannot interpret."""


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_timezone(name: str | None) -> ZoneInfo:
    if not name:
        raise DigestConfigError("timezone is not set")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise DigestConfigError(f"unknown timezone {name!r}") from e


def parse_send_time(value: str | None) -> tuple[int, int]:
    """Parse ``HH:MM`` into (hour, minute)."""
    try:
        hour_str, minute_str = (value or "").split(":")
        hour, minute = int(hour_str), int(minute_str)
    except ValueError as e:
        raise DigestConfigError(f"malformed send time {value!r}") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise DigestConfigError(f"send time out of range {value!r}")
    return hour, minute


def local_now(pref, now_utc: datetime) -> datetime:
    return ensure_utc(now_utc).astimezone(resolve_timezone(pref.timezone))


def weekday_name(local_time: datetime) -> str:
    return WEEKDAYS[local_time.weekday()]


def is_within_delivery_window(
    current_hour: int,
    current_minute: int,
    pref_hour: int,
    pref_minute: int,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> bool:
    # Truncated at midnight: a 23:55 slot only covers 23:55-23:59.
    current_total = current_hour * 60 + current_minute
    preferred = pref_hour * 60 + pref_minute
    return preferred <= current_total < preferred + window_minutes


def is_business_hours(hour: int, start_hour: int, end_hour: int) -> bool:
    return start_hour <= hour < end_hour


def minutes_until_preferred_time(
    current_hour: int, current_minute: int, pref_hour: int, pref_minute: int
) -> int:
    now = current_hour * 60 + current_minute
    preferred = pref_hour * 60 + pref_minute
    if preferred > now:
        return preferred - now
    return MINUTES_PER_DAY - now + preferred


def is_paused(pref, now_utc: datetime) -> bool:
    paused_until = ensure_utc(pref.paused_until)
    return paused_until is not None and paused_until > ensure_utc(now_utc)


def is_slot_pending(pref, cadence: Cadence, now_utc: datetime, window_minutes: int = DEFAULT_WINDOW_MINUTES) -> bool:
    """True while a daily or weekly window is open and not yet delivered today.

    Ignores pause. Raises DigestConfigError on a misconfigured preference.
    """
    user_time = local_now(pref, now_utc)
    pref_hour, pref_minute = parse_send_time(getattr(pref, SEND_TIME_FIELDS[cadence]))

    if not is_within_delivery_window(
        user_time.hour, user_time.minute, pref_hour, pref_minute, window_minutes
    ):
        return False

    if cadence == Cadence.WEEKLY:
        send_day = (pref.weekly_send_day or "").lower()
        if send_day not in WEEKDAYS:
            raise DigestConfigError(f"unknown weekday {pref.weekly_send_day!r}")
        if weekday_name(user_time) != send_day:
            return False

    # At most one successful fire per cadence per local calendar day
    last_sent = ensure_utc(pref.last_sent_at(cadence))
    if last_sent is not None:
        last_sent_local = last_sent.astimezone(user_time.tzinfo)
        if last_sent_local.date() == user_time.date():
            return False

    return True


def _is_due_immediate(pref, now_utc: datetime, cooldown: timedelta) -> bool:
    user_time = local_now(pref, now_utc)
    if not is_business_hours(user_time.hour, pref.business_hours_start, pref.business_hours_end):
        return False

    last_sent = ensure_utc(pref.last_sent_at(Cadence.IMMEDIATE))
    if last_sent is not None and ensure_utc(now_utc) - last_sent < cooldown:
        return False
    return True


def is_due(
    pref,
    cadence: Cadence,
    now_utc: datetime,
    *,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    immediate_cooldown: timedelta = DEFAULT_IMMEDIATE_COOLDOWN,
) -> bool:
    """Return True if ``cadence`` should fire for ``pref`` at ``now_utc``.

    Fails closed: an unresolvable timezone or malformed send time/day logs a
    warning and returns False.
    """
    cadence = Cadence(cadence)
    if is_paused(pref, now_utc):
        return False

    try:
        if cadence == Cadence.IMMEDIATE:
            return _is_due_immediate(pref, now_utc, immediate_cooldown)
        return is_slot_pending(pref, cadence, now_utc, window_minutes)
    except DigestConfigError as e:
        logger.warning(f"Digest preference for user {pref.user_id} is misconfigured ({cadence.value}): {e}")
        return False
