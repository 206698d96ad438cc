"""Conversation message models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from guru_gateway.core.types import MessageRole
from guru_gateway.storage.models import utcnow


@dataclass(frozen=True, slots=True)
class SuggestedAction:
    label: str
    action_id: str
    payload: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True, slots=True)
class MessageMetadata:
    confidence_score: Optional[int] = None  # 0..100
    sources: tuple[str, ...] = ()
    suggested_actions: tuple[SuggestedAction, ...] = ()

    def __post_init__(self) -> None:
        if self.confidence_score is not None and not 0 <= self.confidence_score <= 100:
            raise ValueError(f"confidence_score out of range: {self.confidence_score}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence_score": self.confidence_score,
            "sources": list(self.sources),
            "suggested_actions": [
                {"label": a.label, "action_id": a.action_id, "payload": dict(a.payload or {})}
                for a in self.suggested_actions
            ],
        }


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    role: MessageRole
    text: str
    created_at: datetime
    metadata: Optional[MessageMetadata] = None

    @classmethod
    def create(
        cls,
        role: MessageRole,
        text: str,
        metadata: Optional[MessageMetadata] = None,
        created_at: Optional[datetime] = None,
    ) -> Message:
        return cls(
            id=uuid.uuid4().hex[:12],
            role=role,
            text=text,
            created_at=created_at or utcnow(),
            metadata=metadata,
        )

    def to_api_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.text}
