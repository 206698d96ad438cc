import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from guru_gateway.ai.client import AIClient, AIResponse
from guru_gateway.ai.dispatcher import RequestDispatcher
from guru_gateway.config import AppConfig, StorageConfig
from guru_gateway.context.assembler import ContextAssembler
from guru_gateway.context.registry import PageRegistry
from guru_gateway.core.session import Session
from guru_gateway.gateway.facade import GuruGateway
from guru_gateway.gateway.interaction_log import InteractionLogger
from guru_gateway.quota.ledger import UsageLedger
from guru_gateway.quota.policy import QuotaPolicy
from guru_gateway.storage.crm_repo import CrmRepository
from guru_gateway.storage.database import Database
from guru_gateway.storage.models import InteractionLogRecord, to_db_timestamp

NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)
USER_ID = "user-1"


class FakeAIClient(AIClient):
    """Records every call; replies from a queue, raises ``error``, or waits on ``gate``."""

    def __init__(self):
        self.calls: list[list[dict]] = []
        self.replies: list[str] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.delay = 0.0

    async def complete(self, messages, model, max_tokens=1000, temperature=0.7):
        self.calls.append(messages)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else "Your pipeline has 3 open deals worth $42,000."
        return AIResponse(text=text, input_tokens=10, output_tokens=10)


class FakeUsageStore:
    """In-memory usage store whose individual paths can be switched off."""

    def __init__(self, count: int = 0):
        self.count = count
        self.records: list[InteractionLogRecord] = []
        self.calls: dict[str, int] = defaultdict(int)
        self.fail_daily_usage = False
        self.fail_count_logs = False
        self.fail_limit_check = False
        self.fail_log_interaction = False
        self.fail_insert_log = False

    def _enter(self, name: str, failing: bool) -> None:
        self.calls[name] += 1
        if failing:
            raise RuntimeError(f"{name} unavailable")

    async def daily_usage(self, user_id, day):
        self._enter("daily_usage", self.fail_daily_usage)
        return self.count

    async def has_reached_limit(self, user_id, limit, day):
        self._enter("has_reached_limit", self.fail_limit_check)
        return self.count >= limit

    async def log_interaction(self, record):
        self._enter("log_interaction", self.fail_log_interaction)
        self.records.append(record)
        self.count += 1
        return self.count

    async def count_logs_between(self, user_id, start, end):
        self._enter("count_logs_between", self.fail_count_logs)
        return self.count

    async def insert_log(self, record):
        self._enter("insert_log", self.fail_insert_log)
        self.records.append(record)
        self.count += 1


class Seeder:
    """Inserts CRM rows directly; the gateway itself never writes them."""

    def __init__(self, db: Database):
        self._db = db
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    async def _insert(self, sql: str, params: tuple) -> None:
        await self._db.conn.execute(sql, params)
        await self._db.conn.commit()

    async def profile(self, user_id: str, role: str) -> None:
        await self._insert(
            "INSERT INTO user_profiles (id, first_name, role) VALUES (?, ?, ?)",
            (user_id, user_id.title(), role),
        )

    async def deal(self, user_id=USER_ID, title=None, value=1000.0, stage="proposal", updated_at=NOW) -> str:
        deal_id = self._next_id("deal")
        await self._insert(
            "INSERT INTO deals (id, user_id, title, value, stage, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (deal_id, user_id, title or deal_id, value, stage, to_db_timestamp(updated_at)),
        )
        return deal_id

    async def stage_change(self, deal_id: str, from_stage, to_stage, user_id=USER_ID, changed_at=NOW) -> None:
        await self._insert(
            "INSERT INTO deal_stage_history (deal_id, user_id, from_stage, to_stage, changed_at) VALUES (?, ?, ?, ?, ?)",
            (deal_id, user_id, from_stage, to_stage, to_db_timestamp(changed_at)),
        )

    async def task(self, user_id=USER_ID, title=None, due=None, status="pending", priority="medium") -> str:
        task_id = self._next_id("task")
        await self._insert(
            "INSERT INTO tasks (id, user_id, title, due_date, status, priority) VALUES (?, ?, ?, ?, ?, ?)",
            (task_id, user_id, title or task_id, to_db_timestamp(due) if due else None, status, priority),
        )
        return task_id

    async def contact(self, user_id=USER_ID, first_name="Ada", lead_score=None) -> str:
        contact_id = self._next_id("contact")
        await self._insert(
            "INSERT INTO contacts (id, user_id, first_name, lead_score) VALUES (?, ?, ?, ?)",
            (contact_id, user_id, first_name, lead_score),
        )
        return contact_id

    async def logs(self, count: int, user_id=USER_ID, at=NOW, context="deals") -> None:
        for i in range(count):
            await self._insert(
                "INSERT INTO ai_logs (user_id, prompt, response, context, tokens_used, model, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, f"prompt {i}", f"response {i}", context, 40, "test-model",
                 to_db_timestamp(at - timedelta(minutes=i + 1))),
            )


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "guru.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def ai_client():
    return FakeAIClient()


@pytest.fixture
def usage_store():
    return FakeUsageStore()


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(storage=StorageConfig(db_path=str(tmp_path / "app.db")))


@pytest.fixture
def build_gateway(db, ai_client, clock):
    """Wire a gateway over *store* with real CRM reads and the fake model client."""

    def _build(store, daily_limit=10, page="deals", role="user") -> GuruGateway:
        config = AppConfig()
        registry = PageRegistry.with_builtin_pages()
        session = Session(
            user_id=USER_ID,
            quota=QuotaPolicy(role_name=role, daily_limit=daily_limit),
            current_page=page,
        )
        return GuruGateway(
            session=session,
            ledger=UsageLedger(store, clock=clock),
            assembler=ContextAssembler(CrmRepository(db), registry, config.context, clock=clock),
            dispatcher=RequestDispatcher(ai_client, config.ai, config.context, clock=clock),
            interaction_logger=InteractionLogger(store, clock=clock),
            registry=registry,
            clock=clock,
        )

    return _build
