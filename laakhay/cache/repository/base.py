"""Shared repository plumbing.

Architecture:
    Every repository tracks the same ambient concerns regardless of what it
    caches:
    - Error listeners, invoked with the raw exception of every failed fetch
    - Waiters: futures that settle when a key (and, for paginated queries,
      a window) is loaded, without triggering a load themselves
    - An in-flight counter backing ``wait_for_idle``
    - Background tasks started by the synchronous accessors

Design Decisions:
    - Single event loop, no locks: state is only mutated between awaits
    - Waiters settle in registration order
    - Background task failures are logged, never raised; the failure is
      already recorded as the request's ERROR status
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine, Hashable
from dataclasses import dataclass
from typing import Any

from ..core.config import RepositoryConfig
from ..models.segment import Segment

logger = logging.getLogger(__name__)

ErrorListener = Callable[[BaseException], Awaitable[None]] | Callable[[BaseException], None]


@dataclass
class Waiter:
    """A registered future awaiting settlement of ``key``.

    ``window`` is only set for paginated query waiters.
    """

    key: Hashable
    future: asyncio.Future[None]
    window: Segment | None = None


class WaiterRegistry:
    """Waiters in registration order."""

    def __init__(self) -> None:
        self._waiters: list[Waiter] = []

    def add(self, key: Hashable, window: Segment | None = None) -> asyncio.Future[None]:
        """Register a waiter. Must be called with a running event loop.

        Waiters already done (their callers were cancelled) are dropped.
        """
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters = [waiter for waiter in self._waiters if not waiter.future.done()]
        self._waiters.append(Waiter(key=key, future=future, window=window))
        return future

    def settle(
        self,
        key: Hashable,
        error: BaseException | None = None,
        ready: Callable[[Waiter], bool] | None = None,
    ) -> int:
        """Settle waiters for ``key``.

        With an error every waiter for ``key`` is rejected. Otherwise waiters
        are resolved when ``ready`` accepts them (all of them if omitted);
        the rest stay registered.

        Returns:
            Number of waiters settled
        """
        remaining: list[Waiter] = []
        settled: list[Waiter] = []
        for waiter in self._waiters:
            if waiter.key != key or (error is None and ready is not None and not ready(waiter)):
                remaining.append(waiter)
            else:
                settled.append(waiter)
        self._waiters = remaining
        for waiter in settled:
            _settle_future(waiter.future, error)
        return len(settled)

    def reject_all(self, error_factory: Callable[[Waiter], BaseException]) -> int:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            _settle_future(waiter.future, error_factory(waiter))
        return len(waiters)

    def __len__(self) -> int:
        return len(self._waiters)


def _settle_future(future: asyncio.Future[None], error: BaseException | None) -> None:
    # Cancelled callers leave a done future behind
    if future.done():
        return
    if error is None:
        future.set_result(None)
    else:
        future.set_exception(error)


class Repository(ABC):
    """Basic features every repository provides.

    Subclasses implement ``reset``; the base handles error listeners,
    in-flight accounting and background tasks.
    """

    def __init__(self, *, config: RepositoryConfig | None = None) -> None:
        self.config = config or RepositoryConfig()
        self._error_listeners: list[ErrorListener] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def name(self) -> str:
        return type(self).__name__

    # ----------------------
    # Error listeners
    # ----------------------
    def add_error_listener(self, listener: ErrorListener) -> None:
        """Invoke ``listener`` with the raw exception whenever a fetch fails."""
        if listener not in self._error_listeners:
            self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    def _notify_error(self, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            try:
                result = listener(error)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result))
            except Exception as e:
                # Log error but don't crash
                logger.error(f"Error listener {listener!r} failed: {e}", exc_info=True)

    @abstractmethod
    def reset(self) -> None:
        """Reset the repository's cached state.

        Error listeners are kept.
        """

    # ----------------------
    # In-flight accounting
    # ----------------------
    @property
    def in_flight(self) -> int:
        """Number of id and query loads currently outstanding."""
        return self._in_flight

    def _begin_load(self) -> None:
        self._in_flight += 1
        self._idle.clear()

    def _end_load(self) -> None:
        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._idle.set()

    async def wait_for_idle(self) -> None:
        """Wait until no id or query load is outstanding."""
        while self._in_flight:
            await self._idle.wait()

    # ----------------------
    # Background tasks
    # ----------------------
    @staticmethod
    def _has_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def _spawn(self, factory: Callable[[], Coroutine[Any, Any, Any]]) -> asyncio.Task[Any] | None:
        """Run ``factory()`` as a background task.

        Returns None, without creating the coroutine, when no event loop is
        running (synchronous accessors then only read the cache).
        """
        if not self._has_running_loop():
            logger.debug(f"{self.name}: no running event loop, background load skipped")
            return None
        return self._track(asyncio.get_running_loop().create_task(factory()))

    def _spawn_load(self, factory: Callable[[], Coroutine[Any, Any, Any]]) -> asyncio.Task[Any] | None:
        """Like ``_spawn``, counting the task as an outstanding load until it finishes."""
        if not self._has_running_loop():
            return None
        self._begin_load()

        async def run() -> None:
            try:
                await factory()
            finally:
                self._end_load()

        return self._spawn(run)

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"{self.name}: background load failed: {error!r}")
