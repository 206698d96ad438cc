"""Durable interaction logging with a direct-insert fallback.

Logging happens after the reply is already in the transcript, so a failed
write is a bookkeeping loss only: it is reported and swallowed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

from guru_gateway.core.errors import LogWriteFailed
from guru_gateway.core.fallback import with_fallback
from guru_gateway.log import get_logger
from guru_gateway.storage.models import InteractionLogRecord, utcnow
from guru_gateway.storage.ports import UsageStore

logger = get_logger(__name__)


class InteractionLogger:
    def __init__(self, store: UsageStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    async def log(
        self,
        user_id: str,
        prompt: str,
        response: str,
        page: str,
        metadata: Optional[dict[str, Any]],
        estimated_tokens: int,
        model: str,
    ) -> bool:
        """Write one interaction record. Returns False if every path failed."""
        record = InteractionLogRecord(
            user_id=user_id,
            prompt=prompt,
            response=response,
            page_context=page,
            metadata=metadata or {},
            estimated_tokens=estimated_tokens,
            model=model,
            timestamp=self._clock(),
        )

        async def _primary() -> None:
            await self._store.log_interaction(record)

        try:
            await with_fallback(
                "log_interaction",
                _primary,
                lambda: self._store.insert_log(record),
                error=LogWriteFailed,
            )
        except LogWriteFailed as e:
            logger.error(
                "log_write_failed",
                user_id=user_id,
                page=page,
                prompt_chars=len(prompt),
                error=str(e),
            )
            return False

        logger.info(
            "interaction_logged",
            user_id=user_id,
            page=page,
            estimated_tokens=estimated_tokens,
            model=model,
        )
        return True
