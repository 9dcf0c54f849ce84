"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from taskman_service.config import get_settings
from taskman_service.core.state import init_app_state
from taskman_service.logging import get_logger, setup_logging
from taskman_service.services.database import Database
from taskman_service.services.expiration import ExpirationPolicy
from taskman_service.services.expiration_sweeper import ExpirationSweeper
from taskman_service.services.solution_validator import ValidatorOptions
from taskman_service.services.task_lifecycle import TaskLifecycleManager
from taskman_service.services.task_store import TaskStore
from taskman_service.services.token_ledger import TokenLedger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    state.history_default_limit = settings.ledger.history_default_limit
    state.history_max_limit = settings.ledger.history_max_limit

    # One storage handle shared by the store and the ledger
    database = Database(settings.database.path)
    state.database = database

    ledger = TokenLedger(database)
    state.ledger = ledger

    lifecycle = TaskLifecycleManager(
        database,
        TaskStore(database),
        ledger,
        policy=ExpirationPolicy.from_config(settings.expiration),
        validator_options=ValidatorOptions.from_config(settings.validation),
        allow_creator_accept=settings.lifecycle.allow_creator_accept,
        release_retry_attempts=settings.lifecycle.release_retry_attempts,
    )
    state.lifecycle = lifecycle

    sweeper = ExpirationSweeper(lifecycle, settings.sweeper.interval_seconds)
    state.sweeper = sweeper

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "sweeper_enabled": settings.sweeper.enabled,
        },
    )

    if settings.sweeper.enabled:
        sweeper.start()

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await sweeper.stop()
    database.close()
