"""Token-bucket admission control for outbound provider calls.

One RateScheduler instance is shared by every experiment in the process.
Callers await ``acquire()``; waiters are released strictly in arrival order
by a single drain task, which is the only code that touches the bucket
state. When no token is available the drain task sleeps exactly until the
next one accrues instead of polling. min_spacing_s is measured from the
previous release, so it also separates callers that arrive one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from app.models.experiment import SchedulerStatus

logger = logging.getLogger(__name__)

_TOKEN_EPSILON = 1e-9


class RateScheduler:
    def __init__(
        self,
        budget: int,
        interval_s: float = 60.0,
        *,
        burst: int = 1,
        min_spacing_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if budget < 1:
            raise ValueError("budget must be at least 1")
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        if min_spacing_s < 0:
            raise ValueError("min_spacing_s must not be negative")
        self.budget = int(budget)
        self.interval_s = float(interval_s)
        self.burst = int(burst)
        self.min_spacing_s = float(min_spacing_s)
        self._clock = clock
        self._sleep = sleep
        self._rate = self.budget / self.interval_s  # tokens per second

        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._last_release: Optional[float] = None
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._drain_task: Optional[asyncio.Task[None]] = None

        logger.info(
            "rate_scheduler_initialized budget=%s interval_s=%.3f burst=%s min_spacing_s=%.3f",
            self.budget,
            self.interval_s,
            self.burst,
            self.min_spacing_s,
        )

    @property
    def token_interval_s(self) -> float:
        return self.interval_s / self.budget

    async def acquire(self) -> None:
        """Block until this caller is admitted. Never raises on its own."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        self._ensure_draining()
        await waiter

    def status(self) -> SchedulerStatus:
        elapsed = max(0.0, self._clock() - self._last_refill)
        available = min(float(self.burst), self._tokens + elapsed * self._rate)
        return SchedulerStatus(
            available_tokens=max(0.0, available),
            queue_length=sum(1 for w in self._waiters if not w.done()),
            budget=self.budget,
            interval_s=self.interval_s,
            burst=self.burst,
            min_spacing_s=self.min_spacing_s,
            token_interval_s=self.token_interval_s,
        )

    def reset(self) -> None:
        """Refill the bucket, drop queued waiters and stop the drain task. Test isolation only."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.cancel()
        self._tokens = float(self.burst)
        self._last_refill = self._clock()
        self._last_release = None
        logger.info("rate_scheduler_reset")

    def _ensure_draining(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self._rate)
        self._last_refill = now

    def _discard_abandoned(self) -> None:
        while self._waiters and self._waiters[0].done():
            self._waiters.popleft()

    def _wait_for_release(self) -> float:
        """Seconds until the head waiter may go: a whole token and min_spacing_s since the last release."""
        wait_s = 0.0
        if self._tokens + _TOKEN_EPSILON < 1.0:
            wait_s = (1.0 - self._tokens) / self._rate
        if self.min_spacing_s > 0 and self._last_release is not None:
            wait_s = max(wait_s, self._last_release + self.min_spacing_s - self._clock())
        return wait_s

    async def _drain(self) -> None:
        try:
            while True:
                self._discard_abandoned()
                if not self._waiters:
                    return
                self._refill()
                wait_s = self._wait_for_release()
                if wait_s <= _TOKEN_EPSILON:
                    self._tokens = max(0.0, self._tokens - 1.0)
                    self._last_release = self._clock()
                    self._waiters.popleft().set_result(None)
                    continue
                logger.debug(
                    "rate_scheduler_wait wait_s=%.4f queue_length=%s", wait_s, len(self._waiters)
                )
                await self._sleep(wait_s)
        finally:
            if self._drain_task is asyncio.current_task():
                self._drain_task = None
