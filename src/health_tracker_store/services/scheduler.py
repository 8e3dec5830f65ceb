"""
Deferred remote pushes.

Local writes are coalesced into a single push once a quiet period passes;
each new write restarts the period. The timer comes from an injectable
``TaskScheduler`` so coalescing can be driven deterministically.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PushCallback = Callable[[], Awaitable[bool]]


class ScheduledTask(Protocol):
    """Handle for a delayed callback."""

    def cancel(self) -> None:
        """Prevent the callback from running if it has not started yet."""
        ...


class TaskScheduler(Protocol):
    """Runs coroutine callbacks after a delay."""

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[Any]]
    ) -> ScheduledTask:
        """Schedule ``callback`` to be awaited after ``delay`` seconds."""
        ...


class AsyncioScheduledTask:
    """Delayed callback running as an asyncio task."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.started = False
        self._task = asyncio.get_running_loop().create_task(self._run(delay, callback))

    async def _run(self, delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        await asyncio.sleep(delay)
        self.started = True
        await callback()

    def cancel(self) -> None:
        # A callback already running is left to finish.
        if not self.started:
            self._task.cancel()


class AsyncioTaskScheduler:
    """TaskScheduler backed by the running event loop."""

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[Any]]
    ) -> AsyncioScheduledTask:
        return AsyncioScheduledTask(delay, callback)


class WriteScheduler:
    """
    Debounces local writes into remote pushes.

    Writes only schedule a push while an account is signed in.
    """

    def __init__(
        self,
        push: PushCallback,
        is_signed_in: Callable[[], bool],
        task_scheduler: TaskScheduler | None = None,
        delay: float = 2.0,
    ) -> None:
        """
        Initialize the write scheduler.

        Args:
            push: Coroutine function performing the remote push.
            is_signed_in: Returns whether an account is currently signed in.
            task_scheduler: Timer implementation (event loop by default).
            delay: Quiet period in seconds.
        """
        self.push = push
        self.is_signed_in = is_signed_in
        self.task_scheduler = task_scheduler or AsyncioTaskScheduler()
        self.delay = delay
        self._pending: ScheduledTask | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def notify_write(self, key: str) -> None:
        """Local write listener: schedule a push if signed in."""
        if self.is_signed_in():
            logger.debug(f"Write to {key}, push scheduled in {self.delay}s")
            self.schedule()

    def schedule(self) -> None:
        """Start, or restart, the quiet-period timer."""
        self.cancel()
        try:
            self._pending = self.task_scheduler.call_later(self.delay, self._fire)
        except RuntimeError as e:
            # No running event loop to host the timer.
            logger.warning(f"Cannot schedule remote push: {e}")
            self._pending = None

    def cancel(self) -> None:
        """Cancel a pending push without running it."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def force_sync(self) -> bool:
        """
        Cancel any pending timer and push immediately.

        Returns:
            Result of the push.
        """
        self.cancel()
        return await self._run_push()

    async def _fire(self) -> None:
        self._pending = None
        await self._run_push()

    async def _run_push(self) -> bool:
        try:
            return await self.push()
        except Exception as e:
            logger.error(f"Scheduled push failed: {e}")
            return False
