"""Structured logging setup using structlog.

Every request handled by the gateway runs inside :func:`request_context`, so
events from the ledger, assembler, dispatcher and interaction logger carry the
same ``user_id``, ``session_id`` and ``page`` without passing them around.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager

import structlog


def setup_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog on stderr; ``fmt`` picks console or JSON lines."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *([structlog.processors.format_exc_info] if fmt == "json" else []),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def request_context(user_id: str, session_id: str, page: str) -> AbstractContextManager:
    """Bind request identifiers to every event logged inside the block."""
    return structlog.contextvars.bound_contextvars(
        user_id=user_id,
        session_id=session_id,
        page=page,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
