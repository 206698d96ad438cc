"""Interaction-log and daily-usage repository.

Methods come in two families. The RPC-style methods (``daily_usage``,
``has_reached_limit``, ``log_interaction``) work against the transactional
``ai_usage_daily`` counter and are the primary paths. The direct-table
methods (``count_logs_between``, ``insert_log``) touch ``ai_logs`` only and
exist for fallback use.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Optional

import aiosqlite

from guru_gateway.core.types import UNLIMITED_SENTINEL
from guru_gateway.log import get_logger
from guru_gateway.storage.database import Database
from guru_gateway.storage.models import (
    InteractionLogRecord,
    from_db_timestamp,
    to_db_timestamp,
)

logger = get_logger(__name__)


class UsageRepository:
    """Daily usage counter and interaction log access."""

    def __init__(self, db: Database):
        self._db = db

    async def daily_usage(self, user_id: str, day: date) -> int:
        """Read the server-side counter for *user_id* on the UTC *day*."""
        cursor = await self._db.conn.execute(
            "SELECT count FROM ai_usage_daily WHERE user_id = ? AND day = ?",
            (user_id, day.isoformat()),
        )
        row = await cursor.fetchone()
        return row["count"] if row else 0

    async def has_reached_limit(self, user_id: str, limit: Optional[int], day: date) -> bool:
        """Single predicate query: has *user_id* used *limit* or more requests on *day*."""
        if limit is None:
            limit = UNLIMITED_SENTINEL
        cursor = await self._db.conn.execute(
            """SELECT COALESCE(
                   (SELECT count FROM ai_usage_daily WHERE user_id = ? AND day = ?), 0
               ) >= ? AS reached""",
            (user_id, day.isoformat(), limit),
        )
        row = await cursor.fetchone()
        return bool(row["reached"])

    async def log_interaction(self, record: InteractionLogRecord) -> int:
        """Validate and write *record*; return the user's count for the record's day."""
        if not record.user_id:
            raise ValueError("user_id is required")
        if record.estimated_tokens < 0:
            raise ValueError("estimated_tokens must be non-negative")

        async with self._db.transaction() as conn:
            await self._insert(conn, record)
        return await self.daily_usage(record.user_id, record.timestamp.date())

    async def count_logs_between(self, user_id: str, start: datetime, end: datetime) -> int:
        """Count log rows for *user_id* with ``start <= timestamp < end``."""
        cursor = await self._db.conn.execute(
            """SELECT COUNT(*) AS n FROM ai_logs
               WHERE user_id = ? AND timestamp >= ? AND timestamp < ?""",
            (user_id, to_db_timestamp(start), to_db_timestamp(end)),
        )
        row = await cursor.fetchone()
        return row["n"]

    async def insert_log(self, record: InteractionLogRecord) -> None:
        """Plain single-row insert into ``ai_logs``."""
        async with self._db.transaction() as conn:
            await self._insert(conn, record)

    async def fetch_logs(
        self,
        user_id: Optional[str],
        start: datetime,
        end: datetime,
    ) -> list[InteractionLogRecord]:
        """Return logs in ``[start, end)``, newest first; all users when *user_id* is None."""
        if user_id is None:
            cursor = await self._db.conn.execute(
                """SELECT * FROM ai_logs
                   WHERE timestamp >= ? AND timestamp < ?
                   ORDER BY timestamp DESC""",
                (to_db_timestamp(start), to_db_timestamp(end)),
            )
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM ai_logs
                   WHERE user_id = ? AND timestamp >= ? AND timestamp < ?
                   ORDER BY timestamp DESC""",
                (user_id, to_db_timestamp(start), to_db_timestamp(end)),
            )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    async def _insert(conn: aiosqlite.Connection, record: InteractionLogRecord) -> None:
        cursor = await conn.execute(
            """INSERT INTO ai_logs
               (user_id, prompt, response, context, metadata_json, tokens_used, model, timestamp)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.user_id,
                record.prompt,
                record.response,
                record.page_context,
                json.dumps(record.metadata, default=str),
                record.estimated_tokens,
                record.model,
                to_db_timestamp(record.timestamp),
            ),
        )
        record.id = cursor.lastrowid
        logger.debug("interaction_inserted", user_id=record.user_id, log_id=record.id)

    @staticmethod
    def _row_to_record(row) -> InteractionLogRecord:
        return InteractionLogRecord(
            id=row["id"],
            user_id=row["user_id"],
            prompt=row["prompt"],
            response=row["response"],
            page_context=row["context"],
            metadata=json.loads(row["metadata_json"]),
            estimated_tokens=row["tokens_used"],
            model=row["model"],
            timestamp=from_db_timestamp(row["timestamp"]),
        )
