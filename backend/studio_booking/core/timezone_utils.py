"""
Timezone utilities for the booking engine.

Slot dates and times are wall-clock values in the studio timezone (UTC unless
configured otherwise). Everything persisted is UTC.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from .config import settings


def get_studio_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(settings.studio_timezone)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def get_studio_today() -> date:
    return datetime.now(get_studio_timezone()).date()


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC value.

    SQLite hands back naive datetimes even for timezone-aware columns; those
    are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_slot_time(value: str) -> time:
    """Parse an ``HH:mm`` wall time."""
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes))


def slot_start_utc(slot_date: date, slot_time: str) -> datetime:
    """Instant at which a slot starts, as aware UTC."""
    studio_tz = get_studio_timezone()
    local = studio_tz.localize(datetime.combine(slot_date, parse_slot_time(slot_time)))
    return local.astimezone(pytz.UTC)


def minutes_from_now(minutes: int, now: Optional[datetime] = None) -> datetime:
    base = ensure_utc(now) if now is not None else utc_now()
    return base + timedelta(minutes=minutes)
