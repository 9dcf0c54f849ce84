"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from taskman_service.core.exceptions import ServiceError
from taskman_service.core.state import get_app_state
from taskman_service.routers.validation import (
    optional_user_id,
    parse_int_query,
    parse_json_body,
    require_user_id,
)

router = APIRouter()

DEFAULT_PAGE_LIMIT = 50


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new available task. The caller becomes its creator."""
    creator_id = require_user_id(request)
    data = parse_json_body(await request.body())

    lifecycle = get_app_state().require_lifecycle()
    result = await run_in_threadpool(lifecycle.create_task, data, creator_id)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks, GET /tasks/tutorial (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List available tasks created by someone else, newest first."""
    viewer_id = require_user_id(request)
    task_type = request.query_params.get("type") or None
    difficulty = parse_int_query(request, "difficulty")
    min_reward = parse_int_query(request, "min_reward")
    max_reward = parse_int_query(request, "max_reward")
    page = parse_int_query(request, "page", 1)
    limit = parse_int_query(request, "limit", DEFAULT_PAGE_LIMIT)

    lifecycle = get_app_state().require_lifecycle()
    result: dict[str, Any] = await run_in_threadpool(
        lambda: lifecycle.list_tasks(
            viewer_id,
            task_type=task_type,
            difficulty=difficulty,
            min_reward=min_reward,
            max_reward=max_reward,
            page=page if page is not None else 1,
            limit=limit if limit is not None else DEFAULT_PAGE_LIMIT,
        )
    )
    return result


@router.get("/tasks/tutorial")
async def list_tutorial_tasks(request: Request) -> dict[str, Any]:
    """List available tutorial tasks, oldest first."""
    lifecycle = get_app_state().require_lifecycle()
    tasks = await run_in_threadpool(lifecycle.list_tutorial_tasks, optional_user_id(request))
    return {"tasks": tasks, "count": len(tasks)}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Get task details. The stored solution is never returned."""
    lifecycle = get_app_state().require_lifecycle()
    result: dict[str, Any] = await run_in_threadpool(
        lifecycle.get_task, task_id, optional_user_id(request)
    )
    return result


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/accept")
async def accept_task(task_id: str, request: Request) -> dict[str, Any]:
    """Claim an available task for the caller."""
    user_id = require_user_id(request)
    lifecycle = get_app_state().require_lifecycle()
    result: dict[str, Any] = await run_in_threadpool(lifecycle.accept, task_id, user_id)
    return result


@router.post("/tasks/{task_id}/submit")
async def submit_solution(task_id: str, request: Request) -> dict[str, Any]:
    """Submit a solution for a task the caller has accepted."""
    user_id = require_user_id(request)
    data = parse_json_body(await request.body())
    if "solution" not in data:
        raise ServiceError("INVALID_PAYLOAD", "Missing required field: solution", 400, {})

    lifecycle = get_app_state().require_lifecycle()
    result: dict[str, Any] = await run_in_threadpool(
        lifecycle.submit, task_id, user_id, data["solution"]
    )
    return result


@router.post("/tasks/{task_id}/release")
async def release_task(task_id: str, request: Request) -> dict[str, Any]:
    """
    Release a claim.

    With an ``X-User-Id`` header this is an abandon by the claimant.
    Releasing a task that is not in progress is a no-op.
    """
    user_id = optional_user_id(request)
    lifecycle = get_app_state().require_lifecycle()
    result: dict[str, Any] = await run_in_threadpool(
        lambda: lifecycle.release(task_id, user_id=user_id)
    )
    return result
