"""Unit test fixtures: auto-clear caches and build the storage stack."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from taskman_service.config import clear_settings_cache
from taskman_service.core.state import reset_app_state
from taskman_service.services.database import Database
from taskman_service.services.task_lifecycle import TaskLifecycleManager
from taskman_service.services.task_store import TaskStore
from taskman_service.services.token_ledger import TokenLedger

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Path of a fresh SQLite file."""
    return str(tmp_path / "taskman.db")


@pytest.fixture
def database(db_path: str) -> Iterator[Database]:
    """Open database, closed after the test."""
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def store(database: Database) -> TaskStore:
    """Task store over the test database."""
    return TaskStore(database)


@pytest.fixture
def ledger(database: Database) -> TokenLedger:
    """Token ledger over the test database."""
    return TokenLedger(database)


@pytest.fixture
def lifecycle(database: Database, store: TaskStore, ledger: TokenLedger) -> TaskLifecycleManager:
    """Lifecycle manager with default policy and options."""
    return TaskLifecycleManager(database, store, ledger)
