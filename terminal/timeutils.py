"""Timezone-aware time utilities for the game."""

import datetime
from zoneinfo import ZoneInfo
from .config import TIMEZONE


def get_timezone():
    """Get the timezone object for the game."""
    return ZoneInfo(TIMEZONE)


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(get_timezone())


def isoformat(moment: datetime.datetime) -> str:
    return moment.isoformat(timespec="microseconds")


def minutes_from_now(minutes: int) -> str:
    """ISO timestamp N minutes from now."""
    return isoformat(now() + datetime.timedelta(minutes=minutes))


def archive_key() -> str:
    """Document id for a season archive written right now."""
    return f"season-end-{now().strftime('%Y%m%dT%H%M%S%f')}"
