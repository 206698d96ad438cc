"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from guru_gateway.ai.client import AIClient, AnthropicClient
from guru_gateway.ai.dispatcher import RequestDispatcher
from guru_gateway.config import AppConfig
from guru_gateway.context.assembler import ContextAssembler
from guru_gateway.context.registry import GENERIC_PAGE, PageRegistry
from guru_gateway.core.session import Session, SessionManager
from guru_gateway.gateway.facade import GuruGateway
from guru_gateway.gateway.interaction_log import InteractionLogger
from guru_gateway.log import get_logger
from guru_gateway.quota.ledger import UsageLedger
from guru_gateway.quota.policy import QuotaResolver
from guru_gateway.reporting.usage_stats import UsageReporter
from guru_gateway.storage.crm_repo import CrmRepository
from guru_gateway.storage.database import Database
from guru_gateway.storage.models import utcnow
from guru_gateway.storage.profile_repo import ProfileRepository
from guru_gateway.storage.usage_repo import UsageRepository

logger = get_logger(__name__)


class GuruApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        ai_client: Optional[AIClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.usage_repo = UsageRepository(self.db)
        self.crm_repo = CrmRepository(self.db)
        self.profile_repo = ProfileRepository(self.db)
        self.page_registry = PageRegistry.with_builtin_pages()
        self.quota_resolver = QuotaResolver(config.quota)
        self.ledger = UsageLedger(self.usage_repo, clock=clock)
        self.interaction_logger = InteractionLogger(self.usage_repo, clock=clock)
        self.assembler = ContextAssembler(self.crm_repo, self.page_registry, config.context, clock=clock)
        self.reporter = UsageReporter(self.usage_repo, self.profile_repo, config.reporting)
        self.session_manager = SessionManager()
        self._ai_client = ai_client
        self._clock = clock
        self._dispatcher: RequestDispatcher | None = None

    async def start(self) -> None:
        """Open storage and build the model client."""
        await self.db.initialize()
        if self._ai_client is None:
            self._ai_client = self._create_ai_client()
        self._dispatcher = RequestDispatcher(
            self._ai_client, self.config.ai, self.config.context, clock=self._clock
        )
        logger.info("guru_app_started", model=self.config.ai.model, pages=self.page_registry.keys())

    async def stop(self) -> None:
        await self.db.close()
        logger.info("guru_app_stopped")

    async def open_session(self, user_id: str, page: str = GENERIC_PAGE) -> GuruGateway:
        """Return the user's live gateway, creating a session on first use."""
        if self._dispatcher is None:
            raise RuntimeError("GuruApp not started. Call start() first.")

        existing = self.session_manager.get(user_id)
        if existing is not None:
            existing.set_page(page)
            return existing

        role = await self._resolve_role(user_id)
        session = Session(
            user_id=user_id,
            quota=self.quota_resolver.resolve(role),
            current_page=page,
        )
        session.usage_count = await self.ledger.count_today(user_id)

        gateway = GuruGateway(
            session=session,
            ledger=self.ledger,
            assembler=self.assembler,
            dispatcher=self._dispatcher,
            interaction_logger=self.interaction_logger,
            registry=self.page_registry,
            assistant_name=self.config.ai.assistant_name,
            clock=self._clock,
        )
        self.session_manager.register(gateway)
        logger.info(
            "session_quota_resolved",
            user_id=user_id,
            role=session.quota.role_name,
            daily_limit=session.quota.daily_limit,
            usage_count=session.usage_count,
        )
        return gateway

    def end_session(self, user_id: str) -> None:
        """Drop the user's session; the next open_session re-resolves their role."""
        self.session_manager.reset(user_id)

    async def _resolve_role(self, user_id: str) -> str:
        default_role = self.config.quota.default_role
        try:
            profile = await self.profile_repo.get_profile(user_id)
        except Exception as e:
            logger.warning("profile_read_failed", user_id=user_id, error=str(e))
            return default_role
        if profile is None:
            logger.info("profile_missing", user_id=user_id, role=default_role)
            return default_role
        return profile.role

    def _create_ai_client(self) -> AIClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config; cannot create a model client")
        return AnthropicClient(self.config.anthropic)
