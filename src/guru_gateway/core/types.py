"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Numeric stand-in for "unlimited" where an interface only accepts integers.
UNLIMITED_SENTINEL = 2**31 - 1
