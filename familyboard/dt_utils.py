"""Local calendar helpers.

Timestamps are stored as naive UTC (``datetime.utcnow``); days shown to a
family are calendar days in the configured ``TIMEZONE``.
"""

from calendar import monthrange
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from . import config


def local_zone() -> ZoneInfo:
    return ZoneInfo(config.TIMEZONE)


def local_today(tz: Optional[ZoneInfo] = None) -> date:
    return datetime.now(tz or local_zone()).date()


def local_date(timestamp: datetime, tz: Optional[ZoneInfo] = None) -> date:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz or local_zone()).date()


def utc_bounds_for_days(start: date, end: date, tz: Optional[ZoneInfo] = None) -> tuple[datetime, datetime]:
    """Naive UTC bounds, both inclusive, covering local days ``start``..``end``."""
    zone = tz or local_zone()
    lower = datetime.combine(start, datetime.min.time(), zone)
    upper = datetime.combine(end, datetime.max.time(), zone)
    return (
        lower.astimezone(timezone.utc).replace(tzinfo=None),
        upper.astimezone(timezone.utc).replace(tzinfo=None),
    )


def one_month_before(day: date) -> date:
    """Same day of the previous month, clamped to that month's last day."""
    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    return day.replace(year=year, month=month, day=min(day.day, monthrange(year, month)[1]))
