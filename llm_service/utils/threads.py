"""Bridge blocking iterators running in worker threads to async iterators."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DONE = object()


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


async def iterate_in_thread(factory: Callable[[], Iterator[T]]) -> AsyncIterator[T]:
    """
    Drive a blocking iterator in a worker thread and yield its items.

    The worker checks a stop flag before pulling each item, so closing the
    async iterator (consumer cancelled or finished early) stops the blocking
    iterator at the next item boundary and closes it in the worker thread.
    Exceptions raised by the iterator are re-raised to the consumer.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[object] = asyncio.Queue()
    stop = threading.Event()

    def _put(item: object) -> None:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed; nobody is listening.
            stop.set()

    def _worker() -> None:
        iterator = None
        try:
            iterator = factory()
            for item in iterator:
                if stop.is_set():
                    break
                _put(item)
        except BaseException as e:  # noqa: BLE001 - forwarded to the consumer
            _put(_Failure(e))
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
            _put(_DONE)

    thread = threading.Thread(target=_worker, name="generation-worker", daemon=True)
    thread.start()
    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            if isinstance(item, _Failure):
                raise item.error
            yield item  # type: ignore[misc]
    finally:
        stop.set()
