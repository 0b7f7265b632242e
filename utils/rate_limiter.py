"""
Per-provider rate-limited dispatch queue.

A ``RateLimiter`` serializes calls to one upstream API: tasks run one at a
time, in enqueue order, with dispatches spaced at least
``1 / requests_per_second`` seconds apart.  Limiters are plain objects;
``RateLimiterRegistry`` owns the process-wide instance per provider and
must be configured explicitly at startup (see ``bootstrap.py``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiterQueueFull(Exception):
    """The limiter backlog reached ``max_queue_size``."""


class RateLimiter:
    """FIFO queue drained by a single worker at a fixed request rate."""

    def __init__(
        self,
        requests_per_second: float,
        *,
        name: str = "default",
        max_queue_size: Optional[int] = None,
        task_timeout: Optional[float] = None,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.name = name
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        self.max_queue_size = max_queue_size
        self.task_timeout = task_timeout
        self._queue: Deque[Tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_dispatch: Optional[float] = None

    @property
    def pending(self) -> int:
        """Number of tasks waiting for dispatch."""
        return len(self._queue)

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Enqueue ``task`` (a zero-argument coroutine factory) and wait for
        its own result or exception.

        Raises
        ------
        RateLimiterQueueFull
            The backlog is already at ``max_queue_size``.
        asyncio.TimeoutError
            ``task_timeout`` is set and the task ran longer.
        """
        if self.max_queue_size is not None and len(self._queue) >= self.max_queue_size:
            logger.warning(
                "Rate limiter %s saturated (%d pending) — rejecting task",
                self.name,
                len(self._queue),
            )
            raise RateLimiterQueueFull(
                f"Rate limiter '{self.name}' queue is full ({self.max_queue_size} pending)"
            )

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((task, future))

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queue:
            task, future = self._queue.popleft()
            if future.done():
                # Caller was cancelled before dispatch.
                continue

            running: Optional[asyncio.Task] = None
            try:
                await self._wait_for_slot()
                self._last_dispatch = time.monotonic()
                # Run in its own task so a CancelledError raised by the
                # task stays separate from cancellation of this worker.
                running = loop.create_task(self._dispatch(task))
                await asyncio.wait({running})
            except asyncio.CancelledError:
                if running is not None and not running.done():
                    running.cancel()
                future.cancel()
                self._cancel_pending()
                raise
            _settle(future, running)

    async def _dispatch(self, task: Callable[[], Awaitable[Any]]) -> Any:
        if self.task_timeout is not None:
            return await asyncio.wait_for(task(), self.task_timeout)
        return await task()

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch is None:
            return
        while True:
            remaining = self.min_interval - (time.monotonic() - self._last_dispatch)
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    def _cancel_pending(self) -> None:
        while self._queue:
            _, future = self._queue.popleft()
            future.cancel()


def _settle(future: asyncio.Future, running: asyncio.Task) -> None:
    if future.done():
        return
    if running.cancelled():
        future.cancel()
    elif running.exception() is not None:
        future.set_exception(running.exception())
    else:
        future.set_result(running.result())


class RateLimiterRegistry:
    """Process-wide singleton mapping provider → RateLimiter."""

    _instance: "RateLimiterRegistry | None" = None

    def __new__(cls) -> "RateLimiterRegistry":
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._limiters: Dict[str, RateLimiter] = {}
            cls._instance = inst
        return cls._instance

    def configure(
        self,
        limits: Mapping[str, float],
        *,
        max_queue_size: Optional[int] = None,
        task_timeout: Optional[float] = None,
    ) -> None:
        """Create one limiter per provider from ``{provider: requests_per_second}``."""
        for provider, rps in limits.items():
            self._limiters[provider] = RateLimiter(
                rps,
                name=provider,
                max_queue_size=max_queue_size,
                task_timeout=task_timeout,
            )
            logger.info("Rate limiter configured: %s at %.2f req/s", provider, rps)

    def register(self, provider: str, limiter: RateLimiter) -> None:
        self._limiters[provider] = limiter

    def get(self, provider: str) -> RateLimiter:
        """
        Return the limiter for ``provider``.

        Raises
        ------
        KeyError – the registry was never configured for this provider
        """
        try:
            return self._limiters[provider]
        except KeyError:
            raise KeyError(
                f"No rate limiter configured for provider '{provider}'"
            ) from None

    def list_providers(self) -> List[str]:
        return list(self._limiters.keys())

    # ── reset (for tests) ──────────────────────────────────────────────

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None
