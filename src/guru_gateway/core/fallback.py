"""Primary/fallback combinator shared by the usage ledger and interaction logger."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from guru_gateway.core.errors import GatewayError
from guru_gateway.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_fallback(
    operation: str,
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
    error: type[GatewayError] = GatewayError,
) -> T:
    """Run *primary*; if it raises, run *fallback* instead.

    When the fallback raises too, *error* is raised from the fallback's
    exception so callers can decide between failing open and failing silent.
    """
    try:
        return await primary()
    except Exception as e:
        logger.warning("primary_path_failed", operation=operation, error=str(e))

    try:
        result = await fallback()
    except Exception as e:
        logger.warning("fallback_path_failed", operation=operation, error=str(e))
        raise error(f"{operation} failed on both paths: {e}") from e

    logger.info("fallback_path_used", operation=operation)
    return result
