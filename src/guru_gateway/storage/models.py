"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

# Matches SQLite's strftime('%Y-%m-%dT%H:%M:%f') so stored timestamps sort lexically.
_DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Render *value* as a UTC, millisecond-precision timestamp string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_DB_TIMESTAMP_FORMAT)[:-3]


def from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_day_window(day: date) -> tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` UTC window covering *day*."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


@dataclass
class InteractionLogRecord:
    user_id: str
    prompt: str
    response: str
    page_context: str
    metadata: dict[str, Any] = field(default_factory=dict)
    estimated_tokens: int = 0
    model: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class UserProfile:
    id: str
    role: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
