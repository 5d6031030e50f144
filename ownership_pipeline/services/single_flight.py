"""
Single-flight registry: concurrent requests for the same load share one task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar


T = TypeVar("T")


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: Dict[Hashable, "asyncio.Task[Any]"] = {}

    async def run(self, key: Hashable, load: Callable[[], Awaitable[T]]) -> T:
        """
        Run `load()` once per key at a time; later callers await the same task.

        The shared task is shielded: a caller that is cancelled stops waiting,
        but the load keeps running and its result still reaches the others.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(load())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Retrieve the exception so an abandoned failed load is not reported
        # as "never retrieved"; awaiting callers still receive it.
        if not task.cancelled():
            task.exception()
