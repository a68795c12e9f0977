"""Async single-flight helper.

Used to coordinate concurrent work for the same key so only one coroutine
performs it, while the others await the same Future.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    try:
        _ = fut.exception()
    except asyncio.CancelledError:
        return


class SingleFlight(Generic[K, T]):
    """Per-key single-owner execution.

    The first caller for a key becomes the owner and runs the work; callers
    arriving while it is in flight share the owner's result or exception.
    Once the work settles the key is free again.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._inflight: dict[K, asyncio.Future[T]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    async def run(self, key: K, work: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            fut = self._inflight.get(key)
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                fut.add_done_callback(consume_future_exception)
                self._inflight[key] = fut
                creator = True
            else:
                creator = False

        if not creator:
            return await asyncio.shield(fut)

        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(value)
            return value
        finally:
            async with self._lock:
                self._inflight.pop(key, None)
