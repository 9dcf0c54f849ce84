"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from taskman_service.config import get_settings
from taskman_service.core.exceptions import register_exception_handlers
from taskman_service.core.lifespan import lifespan
from taskman_service.core.middleware import RequestValidationMiddleware
from taskman_service.routers import health, tasks, users

_ROUTERS = (
    (health.router, "Operations"),
    (tasks.router, "Tasks"),
    (users.router, "Ledger"),
)


def create_app() -> FastAPI:
    """
    Build the TaskMan API.

    Settings are read once here for the title and the body size limit;
    everything stateful is created later by :func:`lifespan`.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        description="Task lifecycle, token rewards and claim expiration.",
        version=settings.service.version,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    for router, tag in _ROUTERS:
        app.include_router(router, tags=[tag])

    app.add_middleware(RequestValidationMiddleware, max_body_size=settings.request.max_body_size)
    return app
