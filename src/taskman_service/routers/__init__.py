"""API routers."""

from taskman_service.routers import health, tasks, users

__all__ = ["health", "tasks", "users"]
