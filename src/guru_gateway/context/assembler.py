"""Page-specific context snapshots for grounding assistant answers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping

from guru_gateway.config import ContextConfig
from guru_gateway.context.registry import PageRegistry, SectionFetcher
from guru_gateway.core.errors import ContextFetchPartial
from guru_gateway.log import get_logger
from guru_gateway.storage.crm_repo import CrmRepository
from guru_gateway.storage.models import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ContextSnapshot:
    page: str
    generated_at: datetime
    sections: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    missing: tuple[str, ...] = ()

    @property
    def is_partial(self) -> bool:
        return bool(self.missing)


class ContextAssembler:
    """Builds a fresh snapshot per request from the page's registered fetchers.

    A failing section is dropped from the snapshot and listed in ``missing``;
    the rest of the snapshot is still returned.
    """

    def __init__(
        self,
        crm: CrmRepository,
        registry: PageRegistry,
        config: ContextConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._crm = crm
        self._registry = registry
        self._limit = config.max_records_per_entity
        self._clock = clock

    async def assemble(self, page: str, user_id: str) -> ContextSnapshot:
        profile = self._registry.resolve(page)
        now = self._clock()
        sections: dict[str, Any] = {}
        missing: list[str] = []

        for name, fetcher in profile.context_fetcher.items():
            try:
                sections[name] = await self._fetch_section(name, fetcher, user_id, now)
            except ContextFetchPartial as e:
                missing.append(name)
                logger.warning(
                    "context_fetch_partial",
                    page=page,
                    section=name,
                    error=str(e.cause),
                )

        logger.debug(
            "context_assembled",
            page=page,
            profile=profile.key,
            sections=list(sections),
            missing=missing,
        )
        return ContextSnapshot(
            page=page,
            generated_at=now,
            sections=MappingProxyType(sections),
            missing=tuple(missing),
        )

    async def _fetch_section(
        self, name: str, fetcher: SectionFetcher, user_id: str, now: datetime
    ) -> Any:
        try:
            records = await fetcher(self._crm, user_id, now, self._limit)
        except Exception as e:
            raise ContextFetchPartial(name, e) from e
        if isinstance(records, (list, tuple)):
            return tuple(records[: self._limit])
        return records
