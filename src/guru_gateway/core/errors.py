"""Gateway error taxonomy.

Only ``QuotaExceeded`` and ``ModelUnavailable`` ever reach the user, and both
are rendered as ordinary conversation messages rather than propagated.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway errors."""


class QuotaExceeded(GatewayError):
    def __init__(self, limit: int):
        super().__init__(f"Daily limit of {limit} requests reached")
        self.limit = limit


class ContextFetchPartial(GatewayError):
    def __init__(self, section: str, cause: BaseException):
        super().__init__(f"Context section '{section}' unavailable: {cause}")
        self.section = section
        self.cause = cause


class ModelUnavailable(GatewayError):
    """The model backend failed, timed out, or returned nothing."""


class UsageReadDegraded(GatewayError):
    """Both usage read paths failed."""


class LogWriteFailed(GatewayError):
    """Both interaction-log write paths failed."""
