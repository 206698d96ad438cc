"""Port definitions for the usage and interaction-log store."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Protocol

from guru_gateway.storage.models import InteractionLogRecord


class UsageStore(Protocol):
    """Store interface the ledger and interaction logger depend on."""

    async def daily_usage(self, user_id: str, day: date) -> int:
        """Return the server-side counter for a UTC day."""

    async def has_reached_limit(self, user_id: str, limit: Optional[int], day: date) -> bool:
        """Return whether the counter for a UTC day is at or above *limit*."""

    async def log_interaction(self, record: InteractionLogRecord) -> int:
        """Write a record through the primary path and return the new daily count."""

    async def count_logs_between(self, user_id: str, start: datetime, end: datetime) -> int:
        """Count log rows directly over a half-open time window."""

    async def insert_log(self, record: InteractionLogRecord) -> None:
        """Insert a log row directly, bypassing the primary path."""
