"""
Periodic stale-session sweep.

Guards against sessions leaked by clients that vanished without teardown
(e.g. the disconnect reached a different instance).
"""

from __future__ import annotations

import asyncio
from typing import Optional

from constants import SESSION_MAX_AGE_S, SESSION_SWEEP_INTERVAL_S
from observability.logger import log_event
from session.manager import StreamingSessionManager


class SessionSweeper:
    """Runs manager.sweep() every `interval_s` seconds in a background task."""

    def __init__(
        self,
        manager: StreamingSessionManager,
        *,
        max_age_s: float = SESSION_MAX_AGE_S,
        interval_s: float = SESSION_SWEEP_INTERVAL_S,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._manager = manager
        self._max_age_s = max_age_s
        self._interval_s = interval_s
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self._manager.sweep(self._max_age_s)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SESSION_SWEEP_FAILED",
                    "level": "error",
                    "error": repr(e),
                })
