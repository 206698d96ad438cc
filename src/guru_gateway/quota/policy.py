"""Role-based daily request allowances."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from guru_gateway.config import QuotaConfig


@dataclass(frozen=True, slots=True)
class QuotaPolicy:
    role_name: str
    daily_limit: Optional[int]  # None means unlimited

    @property
    def is_unlimited(self) -> bool:
        return self.daily_limit is None

    def remaining(self, used: int) -> Optional[int]:
        if self.daily_limit is None:
            return None
        return max(0, self.daily_limit - used)


class QuotaResolver:
    """Maps role names onto a closed table of daily limits.

    Anything not listed explicitly, including empty and unknown roles, gets
    the default (most restrictive) limit.
    """

    def __init__(self, config: QuotaConfig):
        self._default_limit = config.default_limit
        self._role_limits = dict(config.role_limits)
        self._unlimited = frozenset(config.unlimited_roles)

    def resolve(self, role_name: Optional[str]) -> QuotaPolicy:
        role = (role_name or "").strip().lower()
        if role in self._unlimited:
            return QuotaPolicy(role_name=role, daily_limit=None)
        return QuotaPolicy(role_name=role, daily_limit=self._role_limits.get(role, self._default_limit))
