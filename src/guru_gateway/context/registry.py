"""Page registry: page key -> title, suggested queries and context fetchers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from guru_gateway.log import get_logger
from guru_gateway.storage.crm_repo import CrmRepository

logger = get_logger(__name__)

# (crm, user_id, now, per-entity limit) -> records
SectionFetcher = Callable[[CrmRepository, str, datetime, int], Awaitable[Any]]

GENERIC_PAGE = "general"


@dataclass(frozen=True, slots=True)
class PageProfile:
    key: str
    title: str
    suggested_queries: tuple[str, ...]
    context_fetcher: Mapping[str, SectionFetcher]

    @property
    def first_query(self) -> str:
        return self.suggested_queries[0] if self.suggested_queries else ""


class PageRegistry:
    """Registry of page profiles. Unknown pages resolve to the generic profile."""

    def __init__(self, generic: PageProfile):
        self._generic = generic
        self._pages: dict[str, PageProfile] = {}

    def register(self, profile: PageProfile) -> None:
        self._pages[_normalize(profile.key)] = profile
        logger.debug("page_registered", page=profile.key, sections=list(profile.context_fetcher))

    def get(self, page: str) -> PageProfile | None:
        return self._pages.get(_normalize(page))

    def resolve(self, page: str) -> PageProfile:
        return self.get(page) or self._generic

    def keys(self) -> list[str]:
        return list(self._pages.keys())

    @classmethod
    def with_builtin_pages(cls) -> PageRegistry:
        registry = cls(_page(GENERIC_PAGE, "Guru", _GENERIC_QUERIES, {
            "recent_deals": _recent_deals,
            "open_tasks": _open_tasks,
        }))
        for profile in _BUILTIN_PAGES:
            registry.register(profile)
        return registry


def _normalize(page: str) -> str:
    return page.strip().lower()


def _page(
    key: str,
    title: str,
    queries: tuple[str, ...],
    sections: dict[str, SectionFetcher],
) -> PageProfile:
    return PageProfile(
        key=key,
        title=title,
        suggested_queries=queries,
        context_fetcher=MappingProxyType(sections),
    )


async def _recent_deals(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.recent_deals(user_id, limit)


async def _stage_history(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.stage_history(user_id, limit)


async def _pipeline_summary(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.pipeline_summary(user_id)


async def _recent_contacts(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.recent_contacts(user_id, limit)


async def _high_value_contacts(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.high_value_contacts(user_id, limit)


async def _recent_companies(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.recent_companies(user_id, limit)


async def _open_tasks(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.open_tasks(user_id, limit)


async def _overdue_tasks(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.overdue_tasks(user_id, now, limit)


async def _upcoming_tasks(crm: CrmRepository, user_id: str, now: datetime, limit: int) -> Any:
    return await crm.tasks_due_between(user_id, now, now + timedelta(days=7), limit)


_GENERIC_QUERIES = (
    "What should I focus on today?",
    "Summarize my pipeline",
    "Which tasks need attention?",
)

_BUILTIN_PAGES = (
    _page("dashboard", "Dashboard", (
        "What should I focus on today?",
        "How is my pipeline trending?",
        "Which deals are at risk?",
    ), {
        "pipeline_summary": _pipeline_summary,
        "recent_deals": _recent_deals,
        "overdue_tasks": _overdue_tasks,
    }),
    _page("deals", "Deals", (
        "Summarize my pipeline",
        "Which deals are stuck in the same stage?",
        "What is my expected revenue this quarter?",
    ), {
        "recent_deals": _recent_deals,
        "stage_history": _stage_history,
    }),
    _page("contacts", "Contacts", (
        "Who are my highest-value leads?",
        "Which contacts should I follow up with?",
        "Draft an outreach plan for my top prospects",
    ), {
        "recent_contacts": _recent_contacts,
        "high_value_contacts": _high_value_contacts,
    }),
    _page("companies", "Companies", (
        "Which companies did I update recently?",
        "Group my accounts by industry",
    ), {
        "recent_companies": _recent_companies,
    }),
    _page("tasks", "Tasks", (
        "Which tasks are overdue?",
        "Prioritize my open tasks",
        "What can I delegate this week?",
    ), {
        "open_tasks": _open_tasks,
        "overdue_tasks": _overdue_tasks,
    }),
    _page("calendar", "Calendar", (
        "What is due in the next 7 days?",
        "Find time for deep work this week",
    ), {
        "upcoming_tasks": _upcoming_tasks,
    }),
)
