"""In-memory, append-only message history for one session."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from guru_gateway.context.registry import PageProfile
from guru_gateway.conversation.models import Message
from guru_gateway.core.types import MessageRole


def welcome_text(assistant_name: str, profile: PageProfile) -> str:
    text = f"Hi! I'm {assistant_name}, your AI sales assistant for {profile.title}."
    if profile.first_query:
        text += f' Try asking: "{profile.first_query}"'
    return text


class ConversationStore:
    """Ordered message list. Appends never reorder or deduplicate."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def open(
        self,
        profile: PageProfile,
        assistant_name: str,
        created_at: Optional[datetime] = None,
    ) -> Optional[Message]:
        """Seed a welcome message when empty. Returns it, or None if history exists."""
        if self._messages:
            return None
        welcome = Message.create(
            MessageRole.ASSISTANT, welcome_text(assistant_name, profile), created_at=created_at
        )
        self._messages.append(welcome)
        return welcome

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def clear(self) -> None:
        self._messages.clear()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
