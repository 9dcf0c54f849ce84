"""Task lifecycle management: accept, submit and release transitions."""

from __future__ import annotations

import math
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

from taskman_service.core.exceptions import ServiceError
from taskman_service.logging import get_logger
from taskman_service.services.expiration import (
    DEFAULT_POLICY,
    as_utc,
    compute_expiration,
    format_timestamp,
    is_expired,
    parse_timestamp,
    time_remaining,
    utc_now,
)
from taskman_service.services.solution_validator import DEFAULT_OPTIONS, TASK_TYPES, validate
from taskman_service.services.task_store import DuplicateTaskError

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from taskman_service.services.database import Database
    from taskman_service.services.expiration import ExpirationPolicy
    from taskman_service.services.solution_validator import ValidatorOptions
    from taskman_service.services.task_store import TaskStore
    from taskman_service.services.token_ledger import TokenLedger

_VALID_STATUSES = ("available", "in_progress", "completed")

_CLEARED_CLAIM: dict[str, Any] = {
    "accepted_by_id": None,
    "accepted_at": None,
    "expires_at": None,
}

# Columns kept out of every client view
_HIDDEN_FIELDS = frozenset({"solution", "lapsed_claim_by_id"})

MAX_TITLE_LENGTH = 200
MAX_PAGE_LIMIT = 100


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _optional_str(payload: dict[str, Any], field_name: str) -> str | None:
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ServiceError(
            "INVALID_PAYLOAD", f"{field_name} must be a non-empty string", 400, {}
        )
    return value


def _optional_bool(payload: dict[str, Any], field_name: str) -> bool:
    value = payload.get(field_name, False)
    if not isinstance(value, bool):
        raise ServiceError("INVALID_PAYLOAD", f"{field_name} must be a boolean", 400, {})
    return value


class TaskLifecycleManager:
    """
    Drives tasks through ``available -> in_progress -> completed``.

    Every transition is a compare-and-swap on the task row, so concurrent
    accepts, submits, releases and sweeps never need an in-process lock.
    Completion and its reward payout share one database transaction.
    """

    def __init__(
        self,
        database: Database,
        store: TaskStore,
        ledger: TokenLedger,
        policy: ExpirationPolicy = DEFAULT_POLICY,
        validator_options: ValidatorOptions = DEFAULT_OPTIONS,
        *,
        allow_creator_accept: bool = True,
        release_retry_attempts: int = 3,
    ) -> None:
        self._db = database
        self._store = store
        self._ledger = ledger
        self._policy = policy
        self._validator_options = validator_options
        self._allow_creator_accept = allow_creator_accept
        self._release_retry_attempts = release_retry_attempts
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _task_to_response(
        self,
        row: dict[str, Any],
        viewer_id: str | None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Convert a task row to its client view. The solution is never included."""
        response = {key: value for key, value in row.items() if key not in _HIDDEN_FIELDS}
        response["is_own_task"] = viewer_id is not None and row["creator_id"] == viewer_id

        expires_at = parse_timestamp(row["expires_at"])
        if expires_at is None:
            response["time_remaining"] = None
        else:
            minutes, seconds = time_remaining(expires_at, as_utc(now))
            response["time_remaining"] = {"minutes": minutes, "seconds": seconds}
        return response

    def _load(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    def _clear_claim(
        self, task_id: str, accepted_by_id: str, expires_at: str, *, lapsed: bool
    ) -> bool:
        """
        Swap exactly the observed claim back to ``available``.

        A lapsed claim leaves its holder in ``lapsed_claim_by_id`` so a late
        submit can still be told the claim expired.
        """
        updated = self._store.update_task(
            task_id,
            {
                "status": "available",
                **_CLEARED_CLAIM,
                "lapsed_claim_by_id": accepted_by_id if lapsed else None,
            },
            expected_status="in_progress",
            expected_values={"accepted_by_id": accepted_by_id, "expires_at": expires_at},
        )
        return updated == 1

    @staticmethod
    def _lapsed_for(task: dict[str, Any], user_id: str) -> bool:
        """True when ``user_id`` held the claim that last lapsed and no longer holds it."""
        return (
            task["lapsed_claim_by_id"] == user_id
            and task["status"] != "completed"
            and task["accepted_by_id"] != user_id
        )

    def _with_retry(self, operation: Callable[[], Any], task_id: str) -> Any:
        """Retry an idempotent storage operation on transient SQLite errors."""
        for attempt in range(1, self._release_retry_attempts):
            try:
                return operation()
            except sqlite3.OperationalError as exc:
                self._logger.warning(
                    "Release attempt failed, retrying",
                    extra={"task_id": task_id, "attempt": attempt, "error": str(exc)},
                )
        return operation()

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    def create_task(
        self,
        payload: dict[str, Any],
        creator_id: str,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Insert a new ``available`` task from generator output.

        Raises:
            ServiceError: INVALID_PAYLOAD for missing or invalid fields,
                TASK_EXISTS for a duplicate ``task_id``.
        """
        required_fields = [
            "type",
            "title",
            "data",
            "solution",
            "token_reward",
            "difficulty",
            "estimated_time",
        ]
        for field_name in required_fields:
            if field_name not in payload:
                raise ServiceError(
                    "INVALID_PAYLOAD", f"Missing required field: {field_name}", 400, {}
                )

        task_type = payload["type"]
        if task_type not in TASK_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"type must be one of: {', '.join(sorted(TASK_TYPES))}",
                400,
                {},
            )

        title = payload["title"]
        if not isinstance(title, str) or not title.strip():
            raise ServiceError("INVALID_PAYLOAD", "Title must be a non-empty string", 400, {})
        if len(title) > MAX_TITLE_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Title must not exceed {MAX_TITLE_LENGTH} characters",
                400,
                {},
            )

        description = payload.get("description", "")
        if not isinstance(description, str):
            raise ServiceError("INVALID_PAYLOAD", "description must be a string", 400, {})

        for field_name in ("data", "solution"):
            if not isinstance(payload[field_name], dict):
                raise ServiceError(
                    "INVALID_PAYLOAD", f"{field_name} must be a JSON object", 400, {}
                )

        for field_name in ("token_reward", "estimated_time"):
            if not _is_positive_int(payload[field_name]):
                raise ServiceError(
                    "INVALID_PAYLOAD", f"{field_name} must be a positive integer", 400, {}
                )

        difficulty = payload["difficulty"]
        if not _is_positive_int(difficulty) or difficulty > 5:
            raise ServiceError(
                "INVALID_PAYLOAD", "difficulty must be an integer between 1 and 5", 400, {}
            )

        task_id = _optional_str(payload, "task_id") or f"t-{uuid.uuid4()}"
        created_at = format_timestamp(as_utc(now))

        row: dict[str, Any] = {
            "task_id": task_id,
            "type": task_type,
            "title": title,
            "description": description,
            "data": payload["data"],
            "solution": payload["solution"],
            "token_reward": payload["token_reward"],
            "difficulty": difficulty,
            "estimated_time": payload["estimated_time"],
            "status": "available",
            **_CLEARED_CLAIM,
            "completed_at": None,
            "completed_by_id": None,
            "lapsed_claim_by_id": None,
            "creator_id": creator_id,
            "is_tutorial": _optional_bool(payload, "is_tutorial"),
            "is_composite": _optional_bool(payload, "is_composite"),
            "organization_id": _optional_str(payload, "organization_id"),
            "project_id": _optional_str(payload, "project_id"),
            "initiative_id": _optional_str(payload, "initiative_id"),
            "created_at": created_at,
        }

        try:
            self._store.insert_task(row)
        except DuplicateTaskError as exc:
            raise ServiceError(
                "TASK_EXISTS",
                "A task with this task_id already exists",
                409,
                {"task_id": task_id},
            ) from exc

        self._logger.info(
            "Task created",
            extra={
                "task_id": task_id,
                "type": task_type,
                "creator_id": creator_id,
                "token_reward": row["token_reward"],
            },
        )
        return self._task_to_response(row, creator_id)

    def get_task(self, task_id: str, viewer_id: str | None = None) -> dict[str, Any]:
        """Get a single task by ID, without its solution."""
        return self._task_to_response(self._load(task_id), viewer_id)

    def list_tasks(
        self,
        viewer_id: str,
        *,
        task_type: str | None = None,
        difficulty: int | None = None,
        min_reward: int | None = None,
        max_reward: int | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        """
        Available tasks the viewer did not create, newest first.

        Raises:
            ServiceError: INVALID_PAYLOAD for out-of-range pagination
                or an unknown task type.
        """
        if page < 1 or limit < 1 or limit > MAX_PAGE_LIMIT:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Invalid pagination parameters. Page must be >= 1, "
                f"limit between 1-{MAX_PAGE_LIMIT}.",
                400,
                {},
            )

        if task_type is not None and task_type not in TASK_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"type must be one of: {', '.join(sorted(TASK_TYPES))}",
                400,
                {},
            )

        # Out-of-range difficulty is ignored rather than rejected
        if difficulty is not None and not 1 <= difficulty <= 5:
            difficulty = None

        filters: dict[str, Any] = {
            "status": "available",
            "task_type": task_type,
            "difficulty": difficulty,
            "min_reward": min_reward,
            "max_reward": max_reward,
            "exclude_creator_id": viewer_id,
        }
        rows = self._store.list_tasks(**filters, limit=limit, offset=(page - 1) * limit)
        total_count = self._store.count_tasks(**filters)
        total_pages = math.ceil(total_count / limit)

        now = utc_now()
        return {
            "tasks": [self._task_to_response(row, viewer_id, now) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total_count,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    def list_tutorial_tasks(self, viewer_id: str | None = None) -> list[dict[str, Any]]:
        """Available tutorial tasks, oldest first."""
        rows = self._store.list_tasks(status="available", is_tutorial=True, newest_first=False)
        return [self._task_to_response(row, viewer_id) for row in rows]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def accept(self, task_id: str, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """
        Claim an available task for ``user_id``.

        Error precedence:
        1. TASK_NOT_FOUND
        2. TASK_NOT_AVAILABLE: not ``available``, or a concurrent accept won
        3. SELF_ACCEPT: only when creators may not accept their own tasks
        """
        now = as_utc(now)
        task = self._load(task_id)

        if task["status"] != "available":
            raise ServiceError(
                "TASK_NOT_AVAILABLE",
                "Task is no longer available",
                409,
                {"status": task["status"]},
            )

        if not self._allow_creator_accept and task["creator_id"] == user_id:
            raise ServiceError("SELF_ACCEPT", "You cannot accept your own task", 400, {})

        expires_at = compute_expiration(
            now, task["estimated_time"], task["difficulty"], task["type"], self._policy
        )
        updated = self._store.update_task(
            task_id,
            {
                "status": "in_progress",
                "accepted_by_id": user_id,
                "accepted_at": format_timestamp(now),
                "expires_at": format_timestamp(expires_at),
            },
            expected_status="available",
        )
        if updated == 0:
            raise ServiceError(
                "TASK_NOT_AVAILABLE", "Task was accepted by another user", 409, {}
            )

        self._logger.info(
            "Task accepted",
            extra={
                "task_id": task_id,
                "user_id": user_id,
                "expires_at": format_timestamp(expires_at),
            },
        )
        return self._task_to_response(self._load(task_id), user_id, now)

    def submit(
        self,
        task_id: str,
        user_id: str,
        solution: object,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Check a solution and, when correct, complete the task and pay the reward.

        A wrong answer leaves the claim and its timer untouched. A correct one
        flips the task to ``completed`` and awards ``token_reward`` in a single
        transaction; if the award fails, the completion is rolled back.

        Error precedence:
        1. TASK_NOT_FOUND
        2. TASK_EXPIRED: the caller's claim was already released as lapsed
        3. INVALID_STATUS: task is not ``in_progress``
        4. NOT_YOUR_TASK: claim held by someone else
        5. TASK_EXPIRED: deadline reached (the claim is released first)
        """
        now = as_utc(now)
        task = self._load(task_id)

        if self._lapsed_for(task, user_id):
            raise ServiceError(
                "TASK_EXPIRED", "Task has expired and is available again", 410, {}
            )

        if task["status"] != "in_progress":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot submit a task in '{task['status']}' status, must be 'in_progress'",
                409,
                {"status": task["status"]},
            )

        if task["accepted_by_id"] != user_id:
            raise ServiceError(
                "NOT_YOUR_TASK", "This task is not accepted by you", 403, {}
            )

        if is_expired(parse_timestamp(task["expires_at"]), now):
            self._with_retry(
                lambda: self._clear_claim(task_id, user_id, task["expires_at"], lapsed=True),
                task_id,
            )
            self._logger.info(
                "Claim expired on submit",
                extra={"task_id": task_id, "user_id": user_id, "expires_at": task["expires_at"]},
            )
            raise ServiceError(
                "TASK_EXPIRED",
                "Task has expired and is available again",
                410,
                {"expires_at": task["expires_at"]},
            )

        result = validate(
            task["type"], solution, task["solution"], task["data"], self._validator_options
        )
        if not result.correct:
            self._logger.info(
                "Incorrect submission",
                extra={"task_id": task_id, "user_id": user_id, "details": result.details},
            )
            return {"success": False, "details": result.details, "score": result.score}

        reward = int(task["token_reward"])
        with self._db.transaction():
            updated = self._store.update_task(
                task_id,
                {
                    "status": "completed",
                    **_CLEARED_CLAIM,
                    "completed_at": format_timestamp(now),
                    "completed_by_id": user_id,
                    "lapsed_claim_by_id": None,
                },
                expected_status="in_progress",
                expected_values={"accepted_by_id": user_id, "expires_at": task["expires_at"]},
            )
            if updated == 0:
                self._raise_lost_claim(task_id, user_id)
            new_balance = self._ledger.award(user_id, reward, "task_completion")

        self._logger.info(
            "Task completed",
            extra={
                "task_id": task_id,
                "user_id": user_id,
                "tokens_awarded": reward,
                "new_balance": new_balance,
            },
        )
        return {
            "success": True,
            "tokens_awarded": reward,
            "new_balance": new_balance,
            "details": result.details,
            "score": result.score,
        }

    def _raise_lost_claim(self, task_id: str, user_id: str) -> None:
        """Explain why the completion swap matched no row."""
        current = self._load(task_id)
        if current["status"] == "completed":
            raise ServiceError(
                "INVALID_STATUS", "Task is already completed", 409, {"status": "completed"}
            )
        if (
            current["status"] == "in_progress"
            and current["accepted_by_id"] != user_id
            and not self._lapsed_for(current, user_id)
        ):
            raise ServiceError("NOT_YOUR_TASK", "This task is not accepted by you", 403, {})
        raise ServiceError(
            "TASK_EXPIRED", "Task has expired and is available again", 410, {}
        )

    def release(self, task_id: str, *, user_id: str | None = None) -> dict[str, Any]:
        """
        Return a claimed task to ``available``.

        Idempotent: available and completed tasks are left untouched. With
        ``user_id`` this is an explicit abandon and only the claimant may do it.

        Raises:
            ServiceError: TASK_NOT_FOUND, or NOT_YOUR_TASK on abandon.
        """

        def attempt() -> dict[str, Any]:
            task = self._load(task_id)
            if task["status"] != "in_progress":
                return {"task_id": task_id, "released": False, "status": task["status"]}
            if user_id is not None and task["accepted_by_id"] != user_id:
                raise ServiceError(
                    "NOT_YOUR_TASK", "This task is not accepted by you", 403, {}
                )
            released = self._clear_claim(
                task_id, task["accepted_by_id"], task["expires_at"], lapsed=False
            )
            status = "available" if released else self._load(task_id)["status"]
            return {"task_id": task_id, "released": released, "status": status}

        result: dict[str, Any] = self._with_retry(attempt, task_id)
        if result["released"]:
            self._logger.info(
                "Task released",
                extra={"task_id": task_id, "user_id": user_id, "abandoned": user_id is not None},
            )
        return result

    def release_expired(self, now: datetime | None = None) -> int:
        """
        Release every claim whose deadline has passed and return how many were freed.

        Row-level failures are logged and skipped so the rest of the sweep proceeds.
        """
        now = as_utc(now)
        released = 0
        for claim in self._store.find_expired_claims(format_timestamp(now)):
            task_id = claim["task_id"]
            try:
                cleared = self._with_retry(
                    lambda claim=claim: self._clear_claim(
                        claim["task_id"], claim["accepted_by_id"], claim["expires_at"], lapsed=True
                    ),
                    task_id,
                )
            except sqlite3.Error:
                self._logger.exception("Failed to release expired task", extra={"task_id": task_id})
                continue
            if cleared:
                released += 1
                self._logger.info(
                    "Expired claim released",
                    extra={
                        "task_id": task_id,
                        "user_id": claim["accepted_by_id"],
                        "expires_at": claim["expires_at"],
                    },
                )
        return released

    # ------------------------------------------------------------------
    # Statistics, used by health endpoint
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task statistics for health reporting."""
        counts: dict[str, int] = dict.fromkeys(_VALID_STATUSES, 0)
        for status_val, count in self._store.count_tasks_by_status().items():
            if status_val in counts:
                counts[status_val] = int(count)
        return {"total_tasks": sum(counts.values()), "tasks_by_status": counts}
