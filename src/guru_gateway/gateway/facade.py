"""Single entry point for the assistant: open, close, send, clear.

A request moves through Checking -> (Blocked | Assembling -> Dispatching ->
Logging) and back to idle. The user's message is appended before anything
else; every other outcome appends exactly one complete message (limit notice,
reply, or apology). Overlapping ``send_message`` calls are independent tasks
sharing only the append-only transcript and the usage ledger.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence

from guru_gateway.ai.dispatcher import DispatchResult, RequestDispatcher
from guru_gateway.context.assembler import ContextAssembler, ContextSnapshot
from guru_gateway.context.registry import PageProfile, PageRegistry
from guru_gateway.conversation.models import Message, MessageMetadata
from guru_gateway.core.errors import ModelUnavailable, QuotaExceeded
from guru_gateway.core.session import Session
from guru_gateway.core.types import MessageRole
from guru_gateway.gateway.interaction_log import InteractionLogger
from guru_gateway.log import get_logger, request_context
from guru_gateway.quota.ledger import UsageLedger
from guru_gateway.storage.models import utcnow

logger = get_logger(__name__)

LIMIT_NOTICE = (
    "You've reached your daily limit of {limit} AI requests. "
    "Upgrade your plan for unlimited access."
)
APOLOGY = "I'm having trouble processing your request right now. Please try again in a moment."


class GuruGateway:
    """Sequences quota check, context assembly, model dispatch and logging."""

    def __init__(
        self,
        session: Session,
        ledger: UsageLedger,
        assembler: ContextAssembler,
        dispatcher: RequestDispatcher,
        interaction_logger: InteractionLogger,
        registry: PageRegistry,
        assistant_name: str = "Guru",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._ledger = ledger
        self._assembler = assembler
        self._dispatcher = dispatcher
        self._interaction_logger = interaction_logger
        self._registry = registry
        self._assistant_name = assistant_name
        self._clock = clock
        self._in_flight = 0

    # --- observables ---

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_open(self) -> bool:
        return self._session.is_open

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._session.conversation.messages

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def usage_count(self) -> int:
        return self._session.usage_count

    @property
    def usage_limit(self) -> Optional[int]:
        """Daily limit, or None when unlimited."""
        return self._session.quota.daily_limit

    @property
    def usage_remaining(self) -> Optional[int]:
        return self._session.quota.remaining(self._session.usage_count)

    @property
    def current_page(self) -> str:
        return self._session.current_page

    @property
    def page_title(self) -> str:
        return self._profile.title

    @property
    def suggested_queries(self) -> tuple[str, ...]:
        return self._profile.suggested_queries

    @property
    def _profile(self) -> PageProfile:
        return self._registry.resolve(self._session.current_page)

    # --- commands ---

    def open(self) -> None:
        self._session.is_open = True
        welcome = self._session.conversation.open(
            self._profile, self._assistant_name, created_at=self._clock()
        )
        logger.info(
            "guru_opened",
            user_id=self._session.user_id,
            page=self._session.current_page,
            seeded_welcome=welcome is not None,
        )

    def close(self) -> None:
        """Hide the assistant. In-flight requests still complete and append."""
        self._session.is_open = False

    def clear(self) -> None:
        self._session.conversation.clear()

    def set_page(self, page: str) -> None:
        self._session.current_page = page

    async def send_message(self, text: str) -> None:
        text = text.strip()
        if not text:
            return

        conversation = self._session.conversation
        history = conversation.messages
        conversation.append(self._message(MessageRole.USER, text))
        page = self._session.current_page

        self._in_flight += 1
        try:
            with request_context(self._session.user_id, self._session.session_id, page):
                await self._handle(text, history, page)
        finally:
            self._in_flight -= 1

    async def _handle(self, text: str, history: Sequence[Message], page: str) -> None:
        session = self._session
        conversation = session.conversation

        try:
            await self._check_quota()
        except QuotaExceeded as e:
            logger.info("quota_exceeded", user_id=session.user_id, limit=e.limit)
            conversation.append(self._message(MessageRole.SYSTEM, LIMIT_NOTICE.format(limit=e.limit)))
            return

        try:
            snapshot = await self._assembler.assemble(page, session.user_id)
            result = await self._dispatcher.dispatch(
                history,
                text,
                snapshot,
                role_name=session.quota.role_name,
                page_title=self._registry.resolve(page).title,
            )
        except ModelUnavailable as e:
            logger.warning("model_unavailable", user_id=session.user_id, page=page, error=str(e))
            conversation.append(self._message(MessageRole.ASSISTANT, APOLOGY))
            return
        except Exception as e:
            logger.error("request_failed", user_id=session.user_id, page=page, error=str(e), exc_info=True)
            conversation.append(self._message(MessageRole.ASSISTANT, APOLOGY))
            return

        conversation.append(self._message(MessageRole.ASSISTANT, result.text, result.metadata))

        await self._interaction_logger.log(
            user_id=session.user_id,
            prompt=text,
            response=result.text,
            page=page,
            metadata=_log_metadata(result, snapshot),
            estimated_tokens=result.tokens.total,
            model=result.model,
        )
        session.usage_count = await self._ledger.count_today(session.user_id)

    def _message(
        self, role: MessageRole, text: str, metadata: Optional[MessageMetadata] = None
    ) -> Message:
        return Message.create(role, text, metadata, created_at=self._clock())

    async def _check_quota(self) -> None:
        limit = self._session.quota.daily_limit
        if await self._ledger.has_reached_limit(self._session.user_id, limit):
            raise QuotaExceeded(limit)


def _log_metadata(result: DispatchResult, snapshot: ContextSnapshot) -> dict:
    metadata = {
        "context_sections": list(snapshot.sections),
        "context_missing": list(snapshot.missing),
        "prompt_tokens": result.tokens.prompt_tokens,
        "reply_tokens": result.tokens.reply_tokens,
        "backend_input_tokens": result.input_tokens,
        "backend_output_tokens": result.output_tokens,
    }
    if result.metadata is not None:
        metadata["reply"] = result.metadata.to_dict()
    return metadata
