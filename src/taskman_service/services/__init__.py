"""Service layer components."""

from taskman_service.services.database import Database
from taskman_service.services.expiration import ExpirationPolicy, compute_expiration
from taskman_service.services.expiration_sweeper import ExpirationSweeper
from taskman_service.services.solution_validator import ValidationResult, validate
from taskman_service.services.task_lifecycle import TaskLifecycleManager
from taskman_service.services.task_store import TaskStore
from taskman_service.services.token_ledger import TokenLedger

__all__ = [
    "Database",
    "ExpirationPolicy",
    "ExpirationSweeper",
    "TaskLifecycleManager",
    "TaskStore",
    "TokenLedger",
    "ValidationResult",
    "compute_expiration",
    "validate",
]
