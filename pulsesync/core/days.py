"""PulseSync — Day-Key Arithmetic.

All calendar days are computed in one fixed timezone so that a record's
day_key never depends on the host's local clock settings.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from pulsesync.config import settings

DAY_KEY_FORMAT = "%Y-%m-%d"


def zone(tz_name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.timezone)


def validate_day_key(d: Optional[str]) -> Optional[str]:
    """Return the day key if valid YYYY-MM-DD, else None."""
    if not d:
        return None
    try:
        parsed = datetime.strptime(d, DAY_KEY_FORMAT)
    except (TypeError, ValueError):
        return None
    # strptime also accepts unpadded "2025-6-1"
    return d if parsed.strftime(DAY_KEY_FORMAT) == d else None


def day_key_for(moment: datetime, tz_name: Optional[str] = None) -> str:
    """Calendar day of `moment` in the fixed timezone.

    Naive datetimes are taken as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone(tz_name)).strftime(DAY_KEY_FORMAT)


def today_key(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    return day_key_for(now or datetime.now(timezone.utc), tz_name)


def shift_day_key(day_key: str, days: int) -> str:
    d = datetime.strptime(day_key, DAY_KEY_FORMAT).date() + timedelta(days=days)
    return d.strftime(DAY_KEY_FORMAT)


def window_day_keys(today: str, length: Optional[int] = None) -> list[str]:
    """The `length` consecutive day keys ending at `today`, oldest first."""
    n = length if length is not None else settings.retention_days
    if n <= 0:
        return []
    end: date = datetime.strptime(today, DAY_KEY_FORMAT).date()
    return [
        (end - timedelta(days=offset)).strftime(DAY_KEY_FORMAT)
        for offset in range(n - 1, -1, -1)
    ]
