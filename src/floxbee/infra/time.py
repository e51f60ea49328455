"""Time utilities: UTC timestamps and tenant-local calendar math."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_date(now: datetime, tz: ZoneInfo) -> date:
    """Calendar date of `now` in the given timezone."""
    return ensure_aware(now).astimezone(tz).date()


def local_day_start(now: datetime, tz: ZoneInfo) -> datetime:
    """Midnight of the tenant-local day containing `now`, as a UTC datetime."""
    day = local_date(now, tz)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def minutes_between(earlier: datetime, later: datetime) -> float:
    return (ensure_aware(later) - ensure_aware(earlier)) / timedelta(minutes=1)
