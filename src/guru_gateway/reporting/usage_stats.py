"""Assistant usage statistics and CSV export over interaction logs."""

from __future__ import annotations

import csv
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence, TextIO

from guru_gateway.config import ReportingConfig
from guru_gateway.log import get_logger
from guru_gateway.storage.models import InteractionLogRecord
from guru_gateway.storage.profile_repo import ProfileRepository
from guru_gateway.storage.usage_repo import UsageRepository

logger = get_logger(__name__)

CSV_HEADERS = ["Date", "User", "Context", "Prompt", "Tokens Used", "Model"]


@dataclass(frozen=True, slots=True)
class UsageBucket:
    key: str
    count: int
    tokens: int


@dataclass(frozen=True, slots=True)
class UsageReport:
    total_requests: int
    total_tokens: int
    avg_tokens_per_request: int
    unique_users: int
    by_date: tuple[UsageBucket, ...]
    by_context: tuple[UsageBucket, ...]
    logs: tuple[InteractionLogRecord, ...]


def _bucket(logs: Iterable[InteractionLogRecord], key_fn) -> list[UsageBucket]:
    counts: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for log in logs:
        entry = counts[key_fn(log)]
        entry[0] += 1
        entry[1] += log.estimated_tokens or 0
    return [UsageBucket(key=k, count=c, tokens=t) for k, (c, t) in counts.items()]


def build_report(logs: Sequence[InteractionLogRecord]) -> UsageReport:
    """Aggregate *logs* by UTC date (ascending) and by page context (busiest first)."""
    total_requests = len(logs)
    total_tokens = sum(log.estimated_tokens or 0 for log in logs)

    by_date = sorted(_bucket(logs, lambda log: log.timestamp.date().isoformat()), key=lambda b: b.key)
    by_context = sorted(
        _bucket(logs, lambda log: log.page_context or "unknown"),
        key=lambda b: (-b.count, b.key),
    )

    return UsageReport(
        total_requests=total_requests,
        total_tokens=total_tokens,
        avg_tokens_per_request=round(total_tokens / total_requests) if total_requests else 0,
        unique_users=len({log.user_id for log in logs}),
        by_date=tuple(by_date),
        by_context=tuple(by_context),
        logs=tuple(logs),
    )


def export_csv(logs: Iterable[InteractionLogRecord], stream: TextIO) -> int:
    """Write *logs* as CSV to *stream*; returns the number of data rows."""
    writer = csv.writer(stream, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_HEADERS)
    rows = 0
    for log in logs:
        writer.writerow([
            log.timestamp.isoformat(),
            log.user_id,
            log.page_context,
            log.prompt,
            log.estimated_tokens or 0,
            log.model,
        ])
        rows += 1
    return rows


class UsageReporter:
    """Scopes report data by the viewer's role."""

    def __init__(
        self,
        usage_repo: UsageRepository,
        profile_repo: ProfileRepository,
        config: ReportingConfig,
    ):
        self._usage_repo = usage_repo
        self._profile_repo = profile_repo
        self._all_users_roles = frozenset(config.all_users_roles)

    async def can_view_all(self, viewer_id: str) -> bool:
        profile = await self._profile_repo.get_profile(viewer_id)
        return profile is not None and profile.role.strip().lower() in self._all_users_roles

    async def report(self, viewer_id: str, start: datetime, end: datetime) -> UsageReport:
        scope = None if await self.can_view_all(viewer_id) else viewer_id
        logs = await self._usage_repo.fetch_logs(scope, start, end)
        logger.info(
            "usage_report_built",
            viewer_id=viewer_id,
            scope="all" if scope is None else "own",
            log_count=len(logs),
        )
        return build_report(logs)
