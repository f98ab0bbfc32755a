"""
Periodic trigger for the ingestion job: one run shortly after startup, then a run every
`interval_seconds` (6 hours by default).

Runs are launched as independent tasks, so a slow run does not delay the next tick and two
runs may overlap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

LOGGER = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class IngestionScheduler:
    def __init__(
        self,
        job: Job,
        interval_seconds: float = 6 * 60 * 60,
        startup_delay: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.job = job
        self.interval_seconds = interval_seconds
        self.startup_delay = max(0.0, startup_delay)
        self.runs_started = 0
        self._startup_handle: Optional[asyncio.TimerHandle] = None
        self._recurring: Optional[asyncio.Task[None]] = None
        self._active: Set[asyncio.Task[None]] = set()
        self._stopped = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._recurring is not None and not self._recurring.done()

    def start(self) -> None:
        """Schedule the startup run and the recurring timer; call from inside the event loop."""
        if self.is_running:
            LOGGER.debug("Scheduler already running; start() ignored.")
            return
        loop = asyncio.get_running_loop()
        self._stopped.clear()
        LOGGER.info(
            "Setting up scheduled ingestion: first run in %.0fs, then every %.1f hours",
            self.startup_delay,
            self.interval_seconds / 3600,
        )
        self._startup_handle = loop.call_later(self.startup_delay, self._launch, "startup")
        self._recurring = loop.create_task(self._tick_forever())

    def stop(self) -> None:
        """Cancel pending timers. Safe to call repeatedly; runs already in flight finish."""
        was_running = self.is_running
        if self._startup_handle is not None:
            self._startup_handle.cancel()
            self._startup_handle = None
        if self._recurring is not None:
            self._recurring.cancel()
            self._recurring = None
        self._stopped.set()
        if was_running:
            LOGGER.info("Scheduled ingestion stopped")

    async def wait_idle(self) -> None:
        """Wait for every run launched so far to finish."""
        while self._active:
            await asyncio.gather(*list(self._active), return_exceptions=True)

    async def serve_forever(self) -> None:
        self.start()
        try:
            await self._stopped.wait()
        finally:
            self.stop()
            await self.wait_idle()

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._launch("scheduled")

    def _launch(self, reason: str) -> None:
        if reason == "startup":
            self._startup_handle = None
        self.runs_started += 1
        task = asyncio.get_running_loop().create_task(self._run_job(reason))
        self._active.add(task)
        task.add_done_callback(self._active.discard)

    async def _run_job(self, reason: str) -> None:
        LOGGER.info("Running %s ingestion (run #%s)", reason, self.runs_started)
        try:
            await self.job()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error during %s ingestion; waiting for the next tick.", reason)
