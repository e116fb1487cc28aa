"""
Per-account scheduler for periodic poll cycles.

Ticks fire at a fixed rate measured from the start of each cycle. At most one
cycle per account is in flight: a tick that arrives while the previous cycle
(or an on-demand poll) still holds the account lock is skipped, not queued.
"""

from __future__ import annotations
import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple

from mailwatch.logging import logger
from mailwatch.models import PollOutcome

CycleFunc = Callable[[], Awaitable[Tuple[PollOutcome, Optional[BaseException]]]]

_SUCCESS_OUTCOMES = (PollOutcome.DELIVERED, PollOutcome.EMPTY)


class AccountScheduler:
    """
    Recurring poll loop for a single account. Instances double as the handle
    returned by ``PollerEngine.start``.

    Supports:
    - Fixed-rate ticks with an immediate first cycle
    - Single-flight cycles (overlapping ticks are skipped)
    - Stop at cycle boundaries; an in-flight cycle finishes and delivers
    - Statistics tracking for health checks
    """

    def __init__(
        self,
        account_id: str,
        cycle_func: CycleFunc,
        interval_seconds: float,
        lock: asyncio.Lock,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            account_id: Account this loop polls
            cycle_func: Coroutine function running one cycle; returns the outcome
                and the error that caused a failed outcome
            interval_seconds: Interval between cycle starts
            lock: The account's single-flight lock, shared with on-demand polls
        """
        self.account_id = account_id
        self.cycle_func = cycle_func
        self.interval_seconds = interval_seconds
        self._lock = lock
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self.stats = {
            "runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "skipped_ticks": 0,
            "last_run_time": None,
            "last_success_time": None,
            "last_error": None,
            "last_outcome": None,
        }

    @property
    def running(self) -> bool:
        """True while the loop is active and no stop was requested."""
        return (
            self._task is not None
            and not self._task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    @property
    def cycle_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the loop as a task on the running event loop."""
        if self.running:
            logger.warning(f"[{self.account_id}] Scheduler is already running")
            return

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._task = loop.create_task(self._scheduler_loop(), name=f"mailwatch-poll:{self.account_id}")
        logger.info(f"[{self.account_id}] Scheduler started with interval {self.interval_seconds:g}s")

    def stop(self) -> None:
        """Request the loop to stop after the current cycle. Idempotent."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        logger.info(f"[{self.account_id}] Stopping scheduler...")
        self._stop_event.set()

    async def wait(self) -> None:
        """Wait until the loop and any in-flight cycle have finished."""
        if self._task is not None:
            await self._task

    def _tick(self) -> None:
        if self.cycle_in_flight or self._lock.locked():
            self.stats["skipped_ticks"] += 1
            logger.warning(f"[{self.account_id}] Previous poll cycle still running, skipping tick")
            return
        self._inflight = asyncio.get_running_loop().create_task(self._run_cycle())

    async def _run_cycle(self) -> None:
        """Execute one cycle and record its outcome; never raises."""
        start_time = time.monotonic()
        try:
            outcome, error = await self.cycle_func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration = time.monotonic() - start_time
            outcome, error = None, e
            logger.exception(f"[{self.account_id}] Poll cycle crashed after {duration:.2f}s: {e}")

        self.stats["runs"] += 1
        self.stats["last_run_time"] = time.time()
        self.stats["last_outcome"] = outcome.value if outcome else "crashed"

        if outcome in _SUCCESS_OUTCOMES:
            self.stats["successful_runs"] += 1
            self.stats["last_success_time"] = self.stats["last_run_time"]
            self.stats["last_error"] = None
        else:
            self.stats["failed_runs"] += 1
            self.stats["last_error"] = str(error) if error else outcome.value

    async def _scheduler_loop(self) -> None:
        """Main scheduler loop."""
        if self._stop_event is None:
            raise RuntimeError("Scheduler loop entered before start()")
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        try:
            while not self._stop_event.is_set():
                self._tick()

                next_tick += self.interval_seconds
                now = loop.time()
                if next_tick < now:
                    # event loop stalled for more than an interval; realign instead of bursting
                    next_tick = now
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)
                except asyncio.TimeoutError:
                    pass

            if self.cycle_in_flight:
                logger.debug(f"[{self.account_id}] Waiting for in-flight cycle to finish")
                await self._inflight
        except asyncio.CancelledError:
            if self.cycle_in_flight:
                self._inflight.cancel()
            raise

        logger.info(f"[{self.account_id}] Scheduler stopped")

    def get_health(self) -> dict:
        """
        Get health check information.

        Returns:
            Dictionary with health status and statistics
        """
        is_healthy = (
            self.running and
            self.stats["runs"] > 0 and
            self.stats["last_error"] is None
        )

        # Unhealthy if the last cycle finished more than two intervals ago
        if self.stats["last_run_time"]:
            time_since_last_run = time.time() - self.stats["last_run_time"]
            if time_since_last_run > (self.interval_seconds * 2):
                is_healthy = False

        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "running": self.running,
            "stop_requested": self.stop_requested,
            "cycle_in_flight": self.cycle_in_flight,
            "stats": self.stats.copy(),
            "interval_seconds": self.interval_seconds,
        }

    def __repr__(self) -> str:
        return f"AccountScheduler({self.account_id!r}, running={self.running})"
