"""Run blocking SQLAlchemy session work off the event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class BlockingRunner:
    """Runs blocking calls in a worker thread, one call at a time.

    Share one instance between everything that talks to the same database
    during a crawl (frontier and record sink) so their sessions never overlap
    on a shared connection.
    """

    def __init__(self) -> None:
        self._lock: asyncio.Lock | None = None

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            return await asyncio.to_thread(fn, *args)
