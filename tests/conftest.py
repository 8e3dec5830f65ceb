"""Shared fixtures: a controllable clock and timer for deterministic tests."""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytz

from health_tracker_store.infrastructure.key_value.backends import MemoryBackend
from health_tracker_store.infrastructure.remote.document_store import InMemoryDocumentStore
from health_tracker_store.services.local_store import LocalStore


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 2, 1, 14, 0, 0, tzinfo=pytz.UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class ManualTask:
    def __init__(self, due: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTaskScheduler:
    """TaskScheduler whose time advances only through ``advance``."""

    def __init__(self) -> None:
        self.time = 0.0
        self.tasks: list[ManualTask] = []

    def call_later(self, delay: float, callback: Callable[[], Awaitable[Any]]) -> ManualTask:
        task = ManualTask(self.time + delay, callback)
        self.tasks.append(task)
        return task

    @property
    def active(self) -> list[ManualTask]:
        return [task for task in self.tasks if not task.cancelled]

    async def advance(self, seconds: float) -> None:
        self.time += seconds
        due = [task for task in self.active if task.due <= self.time]
        for task in due:
            self.tasks.remove(task)
            await task.callback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend: MemoryBackend, clock: FixedClock) -> LocalStore:
    return LocalStore(backend, clock=clock)


@pytest.fixture
def remote(clock: FixedClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def task_scheduler() -> ManualTaskScheduler:
    return ManualTaskScheduler()
