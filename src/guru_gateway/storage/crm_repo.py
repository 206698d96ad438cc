"""Read-only, bounded queries over CRM domain tables."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from guru_gateway.config import MAX_RECORDS_PER_ENTITY
from guru_gateway.core.types import TaskStatus
from guru_gateway.storage.database import Database
from guru_gateway.storage.models import to_db_timestamp

Record = dict[str, Any]


def _bounded(limit: int) -> int:
    return max(0, min(limit, MAX_RECORDS_PER_ENTITY))


class CrmRepository:
    """Recency-ordered, size-capped reads used to ground assistant answers."""

    def __init__(self, db: Database):
        self._db = db

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[Record]:
        cursor = await self._db.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def recent_deals(self, user_id: str, limit: int) -> list[Record]:
        return await self._fetch(
            """SELECT id, title, value, stage, probability, expected_close_date, updated_at
               FROM deals WHERE user_id = ?
               ORDER BY updated_at DESC LIMIT ?""",
            (user_id, _bounded(limit)),
        )

    async def stage_history(self, user_id: str, limit: int) -> list[Record]:
        return await self._fetch(
            """SELECT h.deal_id, d.title AS deal_title, h.from_stage, h.to_stage, h.changed_at
               FROM deal_stage_history h LEFT JOIN deals d ON d.id = h.deal_id
               WHERE h.user_id = ?
               ORDER BY h.changed_at DESC LIMIT ?""",
            (user_id, _bounded(limit)),
        )

    async def pipeline_summary(self, user_id: str) -> list[Record]:
        """Deal count and total value per stage."""
        return await self._fetch(
            """SELECT stage, COUNT(*) AS deal_count, COALESCE(SUM(value), 0) AS total_value
               FROM deals WHERE user_id = ?
               GROUP BY stage ORDER BY stage""",
            (user_id,),
        )

    async def recent_contacts(self, user_id: str, limit: int) -> list[Record]:
        return await self._fetch(
            """SELECT id, first_name, last_name, email, company, position, lead_score, status, updated_at
               FROM contacts WHERE user_id = ?
               ORDER BY updated_at DESC LIMIT ?""",
            (user_id, _bounded(limit)),
        )

    async def high_value_contacts(self, user_id: str, limit: int, min_score: int = 7) -> list[Record]:
        return await self._fetch(
            """SELECT id, first_name, last_name, email, company, lead_score, status
               FROM contacts WHERE user_id = ? AND lead_score > ?
               ORDER BY lead_score DESC, updated_at DESC LIMIT ?""",
            (user_id, min_score, _bounded(limit)),
        )

    async def recent_companies(self, user_id: str, limit: int) -> list[Record]:
        return await self._fetch(
            """SELECT id, name, industry, size, website, updated_at
               FROM companies WHERE user_id = ?
               ORDER BY updated_at DESC LIMIT ?""",
            (user_id, _bounded(limit)),
        )

    async def open_tasks(self, user_id: str, limit: int) -> list[Record]:
        return await self._fetch(
            """SELECT id, title, priority, status, due_date, deal_id, contact_id
               FROM tasks WHERE user_id = ? AND status != ?
               ORDER BY due_date IS NULL, due_date ASC LIMIT ?""",
            (user_id, TaskStatus.COMPLETED.value, _bounded(limit)),
        )

    async def overdue_tasks(self, user_id: str, now: datetime, limit: int) -> list[Record]:
        """Incomplete tasks whose due date precedes *now*."""
        return await self._fetch(
            """SELECT id, title, priority, status, due_date, deal_id, contact_id
               FROM tasks
               WHERE user_id = ? AND status != ? AND due_date IS NOT NULL AND due_date < ?
               ORDER BY due_date ASC LIMIT ?""",
            (user_id, TaskStatus.COMPLETED.value, to_db_timestamp(now), _bounded(limit)),
        )

    async def tasks_due_between(
        self, user_id: str, start: datetime, end: datetime, limit: int
    ) -> list[Record]:
        return await self._fetch(
            """SELECT id, title, priority, status, due_date, deal_id, contact_id
               FROM tasks
               WHERE user_id = ? AND status != ? AND due_date >= ? AND due_date < ?
               ORDER BY due_date ASC LIMIT ?""",
            (
                user_id,
                TaskStatus.COMPLETED.value,
                to_db_timestamp(start),
                to_db_timestamp(end),
                _bounded(limit),
            ),
        )
