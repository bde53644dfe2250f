"""
Periodic background services

Shared start/stop lifecycle and a non-reentrant run guard for the poller and
the syncer. A tick that fires while the previous pass of the same service is
still running is skipped, never queued.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicService:
    """Run :meth:`run_pass` every ``interval_s`` seconds until stopped."""

    name = "periodic service"

    def __init__(self, interval_s: float) -> None:
        self._interval = interval_s
        self._loop_task: asyncio.Task[None] | None = None
        self._started = False
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        """True while a pass is in progress."""
        return self._run_lock.locked()

    async def start(self) -> None:
        if self._started:
            logger.warning(f"{self.name} already started")
            return

        self._started = True
        logger.info(f"Starting {self.name} (interval: {self._interval}s)")
        self._loop_task = asyncio.create_task(self._run_forever())

    async def stop(self) -> None:
        if not self._started:
            return

        logger.info(f"Stopping {self.name}")
        self._started = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def _run_forever(self) -> None:
        while self._started:
            try:
                await asyncio.sleep(self._interval)
                await self.trigger()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {self.name} loop: {e}", exc_info=True)

    async def trigger(self) -> Any | None:
        """Run one pass now unless one is already in progress; returns the pass result."""
        if self._run_lock.locked():
            logger.warning(f"{self.name} pass still running, skipping this run")
            return None
        async with self._run_lock:
            return await self.run_pass()

    async def run_pass(self) -> Any:
        raise NotImplementedError
