# Overview: UTC clock, ISO-8601 parsing and whole-day bounds for bill queries.

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as a naive UTC datetime; every stored timestamp uses this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Accepts "2026-03-01", "2026-03-01T09:30", "2026-03-01T09:30:00Z" and
    offset forms. Offsets are converted to UTC; naive values are taken as
    UTC already. Blank input gives None.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _to_naive_utc(datetime.fromisoformat(text))


def _as_day(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def start_of_day(value: Union[date, datetime]) -> datetime:
    return datetime.combine(_as_day(value), time.min)


def end_of_day(value: Union[date, datetime]) -> datetime:
    return datetime.combine(_as_day(value), time.max)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """JSON form of a stored timestamp, second precision: 2026-03-01T09:30:00Z."""
    if dt is None:
        return None
    return _to_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
