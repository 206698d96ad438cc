"""Per-user daily usage reads.

The count is always derived from logged interactions; nothing here increments
it. Two concurrent requests from one user may both pass ``has_reached_limit``
before either is logged. That over-admission is accepted and bounded by the
number of in-flight requests, so no lock is taken.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from guru_gateway.core.errors import UsageReadDegraded
from guru_gateway.core.fallback import with_fallback
from guru_gateway.log import get_logger
from guru_gateway.storage.models import utc_day_window, utcnow
from guru_gateway.storage.ports import UsageStore

logger = get_logger(__name__)


class UsageLedger:
    def __init__(self, store: UsageStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock
        self._cached_counts: dict[str, int] = {}

    def cached_count(self, user_id: str) -> int:
        return self._cached_counts.get(user_id, 0)

    async def count_today(self, user_id: str) -> int:
        """Requests made today (UTC). Fails open: returns 0 if no read path works."""
        today = self._clock().date()
        start, end = utc_day_window(today)

        try:
            count = await with_fallback(
                "daily_usage",
                lambda: self._store.daily_usage(user_id, today),
                lambda: self._store.count_logs_between(user_id, start, end),
                error=UsageReadDegraded,
            )
        except UsageReadDegraded as e:
            logger.warning("usage_read_degraded", user_id=user_id, error=str(e))
            return 0

        self._cached_counts[user_id] = count
        return count

    async def has_reached_limit(self, user_id: str, limit: Optional[int]) -> bool:
        if limit is None:
            return False
        today = self._clock().date()

        async def _from_cache() -> bool:
            return self.cached_count(user_id) >= limit

        return await with_fallback(
            "has_reached_limit",
            lambda: self._store.has_reached_limit(user_id, limit, today),
            _from_cache,
        )
