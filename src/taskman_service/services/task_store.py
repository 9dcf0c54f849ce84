"""SQLite-backed task storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from taskman_service.services.database import Database


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class TaskStore:
    """
    Row-level access to the ``tasks`` table.

    All status changes go through :meth:`update_task`, which is a
    compare-and-swap: the UPDATE only applies while the row still matches
    the expected status (and any other expected column values), and the
    caller learns from the affected row count whether it won.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "type",
        "title",
        "description",
        "data",
        "solution",
        "token_reward",
        "difficulty",
        "estimated_time",
        "status",
        "accepted_by_id",
        "accepted_at",
        "expires_at",
        "completed_at",
        "completed_by_id",
        "lapsed_claim_by_id",
        "creator_id",
        "is_tutorial",
        "is_composite",
        "organization_id",
        "project_id",
        "initiative_id",
        "created_at",
    )
    _JSON_COLUMNS = frozenset({"data", "solution"})
    _BOOL_COLUMNS = frozenset({"is_tutorial", "is_composite"})
    _COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        f"INSERT INTO tasks ({_COLUMNS_SQL}) "  # nosec B608
        f"VALUES ({', '.join('?' for _ in _TASK_COLUMNS)})"
    )
    _TASK_SELECT_BASE_SQL = f"SELECT {_COLUMNS_SQL} FROM tasks"  # nosec B608

    def __init__(self, database: Database) -> None:
        self._db = database

    def _encode(self, column: str, value: Any) -> Any:
        if column in self._JSON_COLUMNS:
            return json.dumps(value, separators=(",", ":"))
        if column in self._BOOL_COLUMNS:
            return int(bool(value))
        return value

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task: dict[str, Any] = {column: row[column] for column in self._TASK_COLUMNS}
        for column in self._JSON_COLUMNS:
            task[column] = json.loads(task[column])
        for column in self._BOOL_COLUMNS:
            task[column] = bool(task[column])
        return task

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(self._encode(column, task_data[column]) for column in self._TASK_COLUMNS)
        try:
            self._db.write(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._db.fetch_one(self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?", (task_id,))
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected_values: dict[str, Any] | None = None,
    ) -> int:
        """
        Conditionally update task columns and return the number of affected rows.

        ``expected_values`` adds ``column = value`` guards (``IS NULL`` for None)
        so a caller can swap out exactly the claim it observed.
        """
        if len(updates) == 0:
            return 0

        guards = expected_values or {}
        if any(column not in self._TASK_COLUMNS for column in (*updates, *guards)):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        for column, value in guards.items():
            if value is None:
                query += f" AND {column} IS NULL"
            else:
                query += f" AND {column} = ?"
                params.append(self._encode(column, value))

        return self._db.write(query, params)

    def list_tasks(
        self,
        *,
        status: str | None = None,
        task_type: str | None = None,
        difficulty: int | None = None,
        min_reward: int | None = None,
        max_reward: int | None = None,
        exclude_creator_id: str | None = None,
        is_tutorial: bool | None = None,
        newest_first: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters (AND logic)."""
        where, params = self._filters(
            status=status,
            task_type=task_type,
            difficulty=difficulty,
            min_reward=min_reward,
            max_reward=max_reward,
            exclude_creator_id=exclude_creator_id,
            is_tutorial=is_tutorial,
        )
        query = self._TASK_SELECT_BASE_SQL + where
        query += (
            " ORDER BY created_at DESC, rowid DESC"
            if newest_first
            else " ORDER BY created_at ASC, rowid ASC"
        )

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)

        return [self._row_to_task(row) for row in self._db.fetch_all(query, params)]

    def count_tasks(
        self,
        *,
        status: str | None = None,
        task_type: str | None = None,
        difficulty: int | None = None,
        min_reward: int | None = None,
        max_reward: int | None = None,
        exclude_creator_id: str | None = None,
        is_tutorial: bool | None = None,
    ) -> int:
        """Count tasks matching the same filters as :meth:`list_tasks`."""
        where, params = self._filters(
            status=status,
            task_type=task_type,
            difficulty=difficulty,
            min_reward=min_reward,
            max_reward=max_reward,
            exclude_creator_id=exclude_creator_id,
            is_tutorial=is_tutorial,
        )
        row = self._db.fetch_one("SELECT COUNT(*) FROM tasks" + where, params)
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        rows = self._db.fetch_all("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        return {str(row[0]): int(row[1]) for row in rows}

    def find_expired_claims(self, now_iso: str) -> list[dict[str, Any]]:
        """Claims (task_id, accepted_by_id, expires_at) of in-progress tasks past expiry."""
        rows = self._db.fetch_all(
            "SELECT task_id, accepted_by_id, expires_at FROM tasks "
            "WHERE status = 'in_progress' AND expires_at IS NOT NULL AND expires_at < ? "
            "ORDER BY expires_at",
            (now_iso,),
        )
        return [
            {
                "task_id": row["task_id"],
                "accepted_by_id": row["accepted_by_id"],
                "expires_at": row["expires_at"],
            }
            for row in rows
        ]

    @staticmethod
    def _filters(
        *,
        status: str | None,
        task_type: str | None,
        difficulty: int | None,
        min_reward: int | None,
        max_reward: int | None,
        exclude_creator_id: str | None,
        is_tutorial: bool | None,
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if task_type is not None:
            clauses.append("type = ?")
            params.append(task_type)
        if difficulty is not None:
            clauses.append("difficulty = ?")
            params.append(difficulty)
        if min_reward is not None:
            clauses.append("token_reward >= ?")
            params.append(min_reward)
        if max_reward is not None:
            clauses.append("token_reward <= ?")
            params.append(max_reward)
        if exclude_creator_id is not None:
            clauses.append("creator_id <> ?")
            params.append(exclude_creator_id)
        if is_tutorial is not None:
            clauses.append("is_tutorial = ?")
            params.append(int(is_tutorial))

        if len(clauses) == 0:
            return "", params
        return " WHERE " + " AND ".join(clauses), params
