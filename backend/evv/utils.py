from __future__ import annotations

import datetime as dt
from typing import Optional

UTC = dt.timezone.utc


def now_utc() -> dt.datetime:
    return dt.datetime.now(UTC)


def ensure_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Treat naive values (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: Optional[dt.datetime]) -> Optional[str]:
    normalized = ensure_utc(value)
    return normalized.isoformat() if normalized else None


def today_utc() -> dt.date:
    return now_utc().date()
