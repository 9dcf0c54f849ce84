"""Router test fixtures: a real app on a temp database, driven over ASGI."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from taskman_service.app import create_app
from taskman_service.config import clear_settings_cache
from taskman_service.core.lifespan import lifespan
from taskman_service.core.state import get_app_state, reset_app_state
from tests.helpers import ALICE_ID, BOB_ID, CREATOR_ID, make_config_yaml, make_task_payload

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def as_user(user_id: str) -> dict[str, str]:
    """Identity header for a caller."""
    return {"X-User-Id": user_id}


async def create_task(
    client: AsyncClient,
    creator_id: str = CREATOR_ID,
    task_type: str = "arithmetic",
    **overrides: Any,
) -> dict[str, Any]:
    """Create a task through the API and return the response body."""
    response = await client.post(
        "/tasks",
        json=make_task_payload(task_type, **overrides),
        headers=as_user(creator_id),
    )
    assert response.status_code == 201, response.text
    body: dict[str, Any] = response.json()
    return body


async def accept_task(client: AsyncClient, task_id: str, user_id: str) -> dict[str, Any]:
    """Accept a task through the API and return the response body."""
    response = await client.post(f"/tasks/{task_id}/accept", headers=as_user(user_id))
    assert response.status_code == 200, response.text
    body: dict[str, Any] = response.json()
    return body


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and the sweeper disabled."""
    config_content = make_config_yaml(
        str(tmp_path / "test.db"),
        logging=f'  level: "WARNING"\n  directory: "{tmp_path / "logs"}"\n',
        request="  max_body_size: 4096\n",
    )
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def ledger_users(app: Any) -> None:
    """Register the standard test users with zero balances."""
    ledger = get_app_state().require_ledger()
    for user_id in (CREATOR_ID, ALICE_ID, BOB_ID):
        ledger.create_user(user_id)
