"""Background loop that hands lapsed claims back to the task pool."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool

from taskman_service.logging import get_logger
from taskman_service.services.expiration import format_timestamp, utc_now

if TYPE_CHECKING:
    from taskman_service.services.task_lifecycle import TaskLifecycleManager

logger = get_logger(__name__)


class ExpirationSweeper:
    """
    Periodically releases in-progress tasks whose deadline has passed.

    Runs one sweep immediately on :meth:`start`, then one per interval.
    Sweeps never overlap: a sweep requested while another is running is
    skipped. A failed sweep is logged and counted; the next tick retries.
    """

    def __init__(self, lifecycle: TaskLifecycleManager, interval_seconds: float) -> None:
        self._lifecycle = lifecycle
        self._interval_seconds = interval_seconds
        self._sweep_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

        self.last_released_count = 0
        self.total_released = 0
        self.sweeps_completed = 0
        self.sweeps_failed = 0
        self.last_sweep_at: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        """True while the background loop is scheduled."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiration-sweeper")
        logger.info("Expiration sweeper started", extra={"interval_seconds": self._interval_seconds})

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._task = None
        logger.info("Expiration sweeper stopped", extra=self.get_stats())

    async def sweep_once(self) -> int | None:
        """
        Run a single sweep and return the number of tasks released.

        Returns None when another sweep is already in flight.
        Storage errors propagate to the caller.
        """
        if self._sweep_lock.locked():
            logger.debug("Sweep already in progress, skipping")
            return None

        async with self._sweep_lock:
            released: int = await run_in_threadpool(self._lifecycle.release_expired)
            self.last_released_count = released
            self.total_released += released
            self.sweeps_completed += 1
            self.last_sweep_at = format_timestamp(utc_now())

        if released > 0:
            logger.info("Expired tasks released", extra={"released": released})
        return released

    def get_stats(self) -> dict[str, Any]:
        """Counters for health reporting."""
        return {
            "running": self.running,
            "interval_seconds": self._interval_seconds,
            "last_released_count": self.last_released_count,
            "total_released": self.total_released,
            "sweeps_completed": self.sweeps_completed,
            "sweeps_failed": self.sweeps_failed,
            "last_sweep_at": self.last_sweep_at,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.sweeps_failed += 1
                logger.exception("Expiration sweep failed")
            await asyncio.sleep(self._interval_seconds)
