"""Shared test helpers: literal task fixtures and row builders."""

from __future__ import annotations

import copy
import uuid
from typing import Any

from taskman_service.services.expiration import format_timestamp, utc_now

CREATOR_ID = "u-creator"
ALICE_ID = "u-alice"
BOB_ID = "u-bob"

# One hand-written (data, solution) pair per task type.
TASK_FIXTURES: dict[str, dict[str, dict[str, Any]]] = {
    "sort_list": {
        "data": {"items": [5, 2, 9, 1], "order": "asc"},
        "solution": {"sortedItems": [1, 2, 5, 9]},
    },
    "arithmetic": {
        "data": {"expression": "5 + 3 * 2"},
        "solution": {"answer": 11},
    },
    "color_match": {
        "data": {"targetColor": {"r": 120, "g": 60, "b": 200}, "tolerance": 5},
        "solution": {"submittedColor": {"r": 120, "g": 60, "b": 200}},
    },
    "group_separation": {
        "data": {
            "items": ["apple", "carrot", "banana", "leek"],
            "groupNames": ["fruits", "vegetables"],
        },
        "solution": {
            "groups": {"fruits": ["apple", "banana"], "vegetables": ["carrot", "leek"]},
        },
    },
    "defragmentation": {
        "data": {
            "rows": 3,
            "cols": 3,
            "grid": [["A", "", ""], ["", "B", ""], ["A", "", "C"]],
        },
        "solution": {
            "grid": [["A", "B", "C"], ["A", "", ""], ["", "", ""]],
        },
    },
}


def fixture_for(task_type: str) -> dict[str, dict[str, Any]]:
    """Deep copy of the literal fixture for a task type."""
    return copy.deepcopy(TASK_FIXTURES[task_type])


def make_task_id() -> str:
    """Generate a unique task ID."""
    return f"t-{uuid.uuid4()}"


def make_task_payload(task_type: str = "arithmetic", **overrides: Any) -> dict[str, Any]:
    """Body for creating a task, as the content generator would produce it."""
    fixture = fixture_for(task_type)
    payload: dict[str, Any] = {
        "type": task_type,
        "title": f"{task_type} task",
        "description": "Solve it",
        "data": fixture["data"],
        "solution": fixture["solution"],
        "token_reward": 20,
        "difficulty": 1,
        "estimated_time": 30,
    }
    payload.update(overrides)
    return payload


def make_task_row(
    task_id: str | None = None,
    task_type: str = "arithmetic",
    **overrides: Any,
) -> dict[str, Any]:
    """A complete ``tasks`` row in the ``available`` state."""
    fixture = fixture_for(task_type)
    row: dict[str, Any] = {
        "task_id": task_id or make_task_id(),
        "type": task_type,
        "title": f"{task_type} task",
        "description": "",
        "data": fixture["data"],
        "solution": fixture["solution"],
        "token_reward": 20,
        "difficulty": 1,
        "estimated_time": 30,
        "status": "available",
        "accepted_by_id": None,
        "accepted_at": None,
        "expires_at": None,
        "completed_at": None,
        "completed_by_id": None,
        "lapsed_claim_by_id": None,
        "creator_id": CREATOR_ID,
        "is_tutorial": False,
        "is_composite": False,
        "organization_id": None,
        "project_id": None,
        "initiative_id": None,
        "created_at": format_timestamp(utc_now()),
    }
    row.update(overrides)
    return row


def make_config_yaml(db_path: str, *, sweeper_enabled: bool = False, **sections: str) -> str:
    """A complete config file body; ``sections`` replace whole top-level blocks."""
    blocks = {
        "service": '  name: "taskman"\n  version: "0.1.0"\n',
        "server": '  host: "127.0.0.1"\n  port: 3001\n  log_level: "info"\n',
        "logging": '  level: "WARNING"\n  directory: "data/logs"\n',
        "database": f'  path: "{db_path}"\n',
        "request": "  max_body_size: 1048576\n",
        "expiration": (
            "  base_multiplier: 3\n"
            "  difficulty_step: 0.2\n"
            "  min_seconds: 120\n"
            "  max_seconds: 3600\n"
            "  type_multipliers:\n"
            "    sort_list: 1.0\n"
            "    arithmetic: 1.0\n"
            "    color_match: 1.2\n"
            "    group_separation: 1.3\n"
            "    defragmentation: 1.5\n"
        ),
        "lifecycle": "  allow_creator_accept: true\n  release_retry_attempts: 3\n",
        "sweeper": f"  enabled: {str(sweeper_enabled).lower()}\n  interval_seconds: 60\n",
        "ledger": "  history_default_limit: 50\n  history_max_limit: 500\n",
        "validation": "  arithmetic_tolerance: 0.000000001\n  color_match_default_tolerance: 5\n",
    }
    blocks.update(sections)
    return "".join(f"{name}:\n{body}" for name, body in blocks.items() if body)
