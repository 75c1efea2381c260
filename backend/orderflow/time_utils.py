from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def parse_service_date(value: Optional[str]) -> date:
    """Parse a 'YYYY-MM-DD' service date. Raises ValueError on anything else."""
    s = (value or "").strip()
    if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", s):
        raise ValueError(f"Invalid service date: {value!r}")
    return date.fromisoformat(s)


_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)
_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time_label(label: str) -> Optional[time]:
    """Accepts '2:00 PM' or '14:00'. Returns None when unparseable."""
    s = (label or "").strip()
    match = _TIME_12H.match(s)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if not (1 <= hour <= 12 and 0 <= minute <= 59):
            return None
        is_pm = match.group(3).upper() == "PM"
        if is_pm and hour != 12:
            hour += 12
        if not is_pm and hour == 12:
            hour = 0
        return time(hour, minute)
    match = _TIME_24H.match(s)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return time(hour, minute)
    return None


def window_start(service_date: date, time_window: str) -> Optional[datetime]:
    """
    First boundary of a time window on the given date.

    "2:00 PM - 5:00 PM" -> service_date 14:00
    """
    first = (time_window or "").split("-")[0].strip()
    if not first:
        return None
    parsed = parse_time_label(first)
    if parsed is None:
        return None
    return datetime.combine(service_date, parsed)


def week_bounds(moment: datetime) -> tuple[date, date]:
    """Monday-aligned 7-day window (Monday..Sunday) containing moment."""
    start = moment.date() - timedelta(days=moment.weekday())
    return start, start + timedelta(days=6)


def tomorrow(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=1)
