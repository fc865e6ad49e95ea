from __future__ import annotations

from datetime import date, datetime, time, timezone as dt_timezone
from typing import Optional

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

_PLACEHOLDERS = {"", "-", "--", "n/a", "null", "none"}


def _aware(dt: datetime) -> datetime:
    # naive → UTC 로 간주
    if timezone.is_naive(dt):
        return timezone.make_aware(dt, timezone=dt_timezone.utc)
    return dt


def parse_dt_safe(value) -> Optional[datetime]:
    """ISO8601 / date / datetime → aware datetime. 못 읽으면 None (예외 없음)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=dt_timezone.utc)
    s = str(value).strip()
    if s.lower() in _PLACEHOLDERS:
        return None
    try:
        dt = parse_datetime(s)
        if dt is None:
            d = parse_date(s[:10])
            if d is None:
                return None
            return datetime.combine(d, time.min, tzinfo=dt_timezone.utc)
    except ValueError:
        return None
    return _aware(dt)


def parse_day_first(value) -> Optional[datetime]:
    """
    ShipsGo export 날짜 "DD/MM/YYYY" 또는 "DD/MM/YYYY HH:MM:SS".
    시간은 버리고 UTC 자정으로 정규화. '-', 빈 값, 잘못된 값은 None.
    """
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        d = value.date() if isinstance(value, datetime) else value
        return datetime.combine(d, time.min, tzinfo=dt_timezone.utc)
    s = str(value).strip()
    if s.lower() in _PLACEHOLDERS:
        return None
    parts = s.split(" ")[0].split("/")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(p) for p in parts)
        return datetime(year, month, day, tzinfo=dt_timezone.utc)
    except ValueError:
        return None


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
