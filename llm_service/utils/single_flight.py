"""Coalesce concurrent calls for the same key into a single execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlight(Generic[K, V]):
    """
    Run at most one call per key at a time.

    The first caller for a key starts the call as a task; callers arriving
    while it runs await the same task and receive the same result or
    exception. The key is forgotten once the task finishes, so a failed call
    is never cached. Cancelling a waiter does not cancel the shared task.
    """

    def __init__(self) -> None:
        self._calls: dict[K, asyncio.Task[V]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    async def do(self, key: K, fn: Callable[[], Awaitable[V]]) -> V:
        """
        Run ``fn`` for ``key`` or join the run already in progress.
        Args:
            key: Coalescing key.
            fn: Zero-argument coroutine factory, only invoked by the first caller.
        Returns:
            The shared result.
        """
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._calls[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight call for %s", key)
        return await asyncio.shield(task)

    def _forget(self, key: K, task: asyncio.Task[V]) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        # Retrieve the exception so an unobserved failure is not reported
        # as "exception was never retrieved" when every waiter was cancelled.
        if not task.cancelled():
            task.exception()
