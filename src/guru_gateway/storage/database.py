"""SQLite database connection manager with schema migration."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from guru_gateway.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_profiles (
    id              TEXT PRIMARY KEY,
    first_name      TEXT NOT NULL DEFAULT '',
    last_name       TEXT NOT NULL DEFAULT '',
    email           TEXT NOT NULL DEFAULT '',
    role            TEXT NOT NULL DEFAULT 'user',
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS ai_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    prompt          TEXT    NOT NULL,
    response        TEXT    NOT NULL,
    context         TEXT    NOT NULL DEFAULT '',
    metadata_json   TEXT    NOT NULL DEFAULT '{}',
    tokens_used     INTEGER NOT NULL DEFAULT 0 CHECK(tokens_used >= 0),
    model           TEXT    NOT NULL DEFAULT '',
    timestamp       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_ai_logs_user_time
    ON ai_logs(user_id, timestamp);

CREATE TABLE IF NOT EXISTS ai_usage_daily (
    user_id         TEXT    NOT NULL,
    day             TEXT    NOT NULL,
    count           INTEGER NOT NULL DEFAULT 0 CHECK(count >= 0),
    PRIMARY KEY (user_id, day)
);

CREATE TRIGGER IF NOT EXISTS trg_usage_increment AFTER INSERT ON ai_logs BEGIN
    INSERT OR IGNORE INTO ai_usage_daily(user_id, day, count)
        VALUES (new.user_id, substr(new.timestamp, 1, 10), 0);
    UPDATE ai_usage_daily SET count = count + 1
        WHERE user_id = new.user_id AND day = substr(new.timestamp, 1, 10);
END;

CREATE TRIGGER IF NOT EXISTS trg_usage_no_decrement BEFORE UPDATE ON ai_usage_daily
WHEN new.count < old.count BEGIN
    SELECT RAISE(ABORT, 'usage counter cannot be decremented');
END;

CREATE TABLE IF NOT EXISTS companies (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    name            TEXT NOT NULL,
    industry        TEXT,
    size            TEXT,
    website         TEXT,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS contacts (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    first_name      TEXT NOT NULL,
    last_name       TEXT NOT NULL DEFAULT '',
    email           TEXT NOT NULL DEFAULT '',
    company         TEXT,
    position        TEXT,
    lead_score      INTEGER,
    status          TEXT NOT NULL DEFAULT 'lead' CHECK(status IN ('lead','prospect','customer')),
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS deals (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    contact_id          TEXT,
    title               TEXT NOT NULL,
    value               REAL NOT NULL DEFAULT 0,
    stage               TEXT NOT NULL DEFAULT 'prospecting' CHECK(stage IN
                            ('prospecting','qualification','proposal','negotiation','closed_won','closed_lost')),
    probability         INTEGER NOT NULL DEFAULT 0,
    expected_close_date TEXT,
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS deal_stage_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    deal_id         TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    from_stage      TEXT,
    to_stage        TEXT NOT NULL,
    changed_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    contact_id      TEXT,
    deal_id         TEXT,
    title           TEXT NOT NULL,
    description     TEXT,
    due_date        TEXT,
    priority        TEXT NOT NULL DEFAULT 'medium' CHECK(priority IN ('low','medium','high')),
    status          TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','in_progress','completed')),
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_deals_user_updated ON deals(user_id, updated_at);
CREATE INDEX IF NOT EXISTS idx_stage_history_user ON deal_stage_history(user_id, changed_at);
CREATE INDEX IF NOT EXISTS idx_contacts_user_updated ON contacts(user_id, updated_at);
CREATE INDEX IF NOT EXISTS idx_companies_user_updated ON companies(user_id, updated_at);
CREATE INDEX IF NOT EXISTS idx_tasks_user_due ON tasks(user_id, status, due_date);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        # one connection means one SQLite transaction at a time
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back on any error so a failed write leaves nothing pending."""
        conn = self.conn
        async with self._write_lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
