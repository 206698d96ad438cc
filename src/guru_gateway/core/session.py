"""Per-user assistant session state and the manager that keeps it alive."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from guru_gateway.context.registry import GENERIC_PAGE
from guru_gateway.conversation.store import ConversationStore
from guru_gateway.log import get_logger
from guru_gateway.quota.policy import QuotaPolicy

if TYPE_CHECKING:
    from guru_gateway.gateway.facade import GuruGateway

logger = get_logger(__name__)


@dataclass
class Session:
    """Everything the gateway knows about one user's assistant session.

    The quota policy is fixed for the lifetime of the session; picking up a
    role change requires a new session.
    """

    user_id: str
    quota: QuotaPolicy
    current_page: str = GENERIC_PAGE
    is_open: bool = False
    usage_count: int = 0
    conversation: ConversationStore = field(default_factory=ConversationStore)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class SessionManager:
    """Maps user IDs to their live gateway."""

    def __init__(self) -> None:
        self._gateways: dict[str, GuruGateway] = {}

    def get(self, user_id: str) -> GuruGateway | None:
        return self._gateways.get(user_id)

    def register(self, gateway: GuruGateway) -> None:
        session = gateway.session
        self._gateways[session.user_id] = gateway
        logger.info("session_created", user_id=session.user_id, session_id=session.session_id)

    def reset(self, user_id: str) -> None:
        """Forget the user's session so the next open starts fresh."""
        gateway = self._gateways.pop(user_id, None)
        if gateway is not None:
            logger.info("session_reset", user_id=user_id, session_id=gateway.session.session_id)
