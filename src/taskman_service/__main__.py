"""Entry point for the TaskMan service.

Usage::

    python -m taskman_service
"""

from __future__ import annotations

import uvicorn

from taskman_service.config import get_settings


def main() -> None:
    """Run the HTTP server with the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "taskman_service.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
