"""SQLite connection shared by the task store and the token ledger."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    data TEXT NOT NULL,
    solution TEXT NOT NULL,
    token_reward INTEGER NOT NULL CHECK (token_reward > 0),
    difficulty INTEGER NOT NULL CHECK (difficulty BETWEEN 1 AND 5),
    estimated_time INTEGER NOT NULL CHECK (estimated_time > 0),
    status TEXT NOT NULL DEFAULT 'available'
        CHECK (status IN ('available', 'in_progress', 'completed')),
    accepted_by_id TEXT,
    accepted_at TEXT,
    expires_at TEXT,
    completed_at TEXT,
    completed_by_id TEXT,
    lapsed_claim_by_id TEXT,
    creator_id TEXT NOT NULL,
    is_tutorial INTEGER NOT NULL DEFAULT 0,
    is_composite INTEGER NOT NULL DEFAULT 0,
    organization_id TEXT,
    project_id TEXT,
    initiative_id TEXT,
    created_at TEXT NOT NULL,
    CHECK (
        (status = 'in_progress'
            AND accepted_by_id IS NOT NULL
            AND accepted_at IS NOT NULL
            AND expires_at IS NOT NULL
            AND expires_at > accepted_at)
        OR (status <> 'in_progress'
            AND accepted_by_id IS NULL
            AND accepted_at IS NULL
            AND expires_at IS NULL)
    )
);

CREATE INDEX IF NOT EXISTS ix_tasks_status_expires_at
    ON tasks(status, expires_at);

CREATE INDEX IF NOT EXISTS ix_tasks_status_created_at
    ON tasks(status, created_at);

CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    token_balance INTEGER NOT NULL DEFAULT 0 CHECK (token_balance >= 0),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS token_transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(user_id),
    amount INTEGER NOT NULL CHECK (amount <> 0),
    balance INTEGER NOT NULL CHECK (balance >= 0),
    type TEXT NOT NULL CHECK (type IN ('award', 'deduct')),
    reason TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_token_transactions_user_seq
    ON token_transactions(user_id, seq);
"""


class Database:
    """
    One SQLite connection with explicit units of work.

    Writes outside :meth:`transaction` commit immediately. Writes inside
    it join the open ``BEGIN IMMEDIATE`` transaction and commit or roll
    back together. Nested :meth:`transaction` blocks join the outermost
    one. The RLock serializes threads within the process; ``BEGIN
    IMMEDIATE`` plus ``busy_timeout`` serializes writers across processes.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(_SCHEMA)
            self._db.commit()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed reads and writes as one atomic unit."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                self._depth = 0
                with contextlib.suppress(sqlite3.Error):
                    self._db.rollback()
                raise
            self._depth = 0
            try:
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.rollback()
                raise

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        """Run a read query and return the first row."""
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
        return row

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a read query and return every row."""
        with self._lock:
            return list(self._db.execute(query, params).fetchall())

    def write(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement and return the affected row count."""
        with self._lock:
            if self._depth > 0:
                return int(self._db.execute(query, params).rowcount)
            try:
                cursor = self._db.execute(query, params)
                self._db.commit()
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.rollback()
                raise
            return int(cursor.rowcount)

    def ping(self) -> bool:
        """Check that the connection answers a trivial query."""
        try:
            self.fetch_one("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
