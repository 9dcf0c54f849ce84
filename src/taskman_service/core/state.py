"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskman_service.services.database import Database
    from taskman_service.services.expiration_sweeper import ExpirationSweeper
    from taskman_service.services.task_lifecycle import TaskLifecycleManager
    from taskman_service.services.token_ledger import TokenLedger


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    database: Database | None = None
    ledger: TokenLedger | None = None
    lifecycle: TaskLifecycleManager | None = None
    sweeper: ExpirationSweeper | None = None
    history_default_limit: int = 50
    history_max_limit: int = 500

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")

    def require_lifecycle(self) -> TaskLifecycleManager:
        """Return the lifecycle manager or fail loudly if startup did not run."""
        if self.lifecycle is None:
            msg = "TaskLifecycleManager not initialized"
            raise RuntimeError(msg)
        return self.lifecycle

    def require_ledger(self) -> TokenLedger:
        """Return the token ledger or fail loudly if startup did not run."""
        if self.ledger is None:
            msg = "TokenLedger not initialized"
            raise RuntimeError(msg)
        return self.ledger


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
