"""Health check endpoint."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from taskman_service.core.state import get_app_state
from taskman_service.schemas import HealthResponse, SweeperStats

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = {}
    if state.lifecycle is not None:
        stats = await run_in_threadpool(state.lifecycle.get_stats)
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    database: Literal["ok", "unavailable"] = "unavailable"
    if state.database is not None and await run_in_threadpool(state.database.ping):
        database = "ok"
    sweeper = None
    if state.sweeper is not None:
        sweeper = SweeperStats.model_validate(state.sweeper.get_stats())
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        database=database,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        sweeper=sweeper,
    )
