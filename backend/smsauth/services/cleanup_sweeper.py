"""Expired verification code sweeper.

asyncio background task started from the FastAPI lifespan. Every interval
it clears codes whose expiry has passed so stale codes do not linger in
storage. A failed pass is logged and the loop carries on.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime

from smsauth.core.clock import Clock, SystemClock
from smsauth.services.identity_store import IdentityStore

logger = logging.getLogger(__name__)

# Default interval: 5 minutes
DEFAULT_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class SweepResult:
    """Statistics from one sweep pass."""

    cleared: int
    finished_at: datetime


class CleanupSweeper:
    """Background worker that periodically clears expired codes.

    Lifecycle:
    - start() creates an asyncio task that runs the sweep loop.
    - stop() cancels the task and waits for it to finish.
    - run_once() executes a single pass.

    Args:
        store: Identity store to sweep.
        interval_seconds: Seconds between passes.
        clock: Time source for the expiry cut-off.
    """

    def __init__(
        self,
        store: IdentityStore,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self._store = store
        self._interval_seconds = interval_seconds
        self._clock = clock or SystemClock()
        self._task: asyncio.Task[None] | None = None
        self._last_result: SweepResult | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def last_run_at(self) -> datetime | None:
        """Timestamp of the most recent completed pass."""
        return self._last_result.finished_at if self._last_result else None

    @property
    def last_cleared(self) -> int | None:
        """Codes cleared by the most recent completed pass."""
        return self._last_result.cleared if self._last_result else None

    def start(self) -> None:
        """Start the background sweep loop.

        No-op if already running. Must be called with a running event loop.
        """
        if self.is_running:
            logger.warning("Cleanup sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Cleanup sweeper started (interval=%ss)", self._interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Cleanup sweeper stopped")

    async def run_once(self) -> SweepResult:
        """Clear every code that expired before now.

        Returns:
            SweepResult with the number of cleared codes.
        """
        now = self._clock.now()
        cleared = await self._store.sweep_expired(now)
        self._last_result = SweepResult(cleared=cleared, finished_at=self._clock.now())
        return self._last_result

    async def _run_loop(self) -> None:
        """Background loop: sleep, sweep, repeat."""
        try:
            while self._running:
                await asyncio.sleep(self._interval_seconds)
                try:
                    result = await self.run_once()
                    if result.cleared:
                        logger.info("Cleared %d expired codes", result.cleared)
                except Exception:  # noqa: BLE001
                    logger.exception("Error in cleanup sweep")
        except asyncio.CancelledError:
            logger.debug("Cleanup loop cancelled")
            raise
