"""Bounded channel between the crawl workers and the record sink.

Workers are producers: ``emit``, ``update_subclassification`` and
``finish_url`` put events on a bounded ``asyncio.Queue`` and wait when it is
full, so a slow sink throttles fetching. A single consumer task is the only
caller of the sink, which therefore never sees concurrent calls; sink calls run
through a ``BlockingRunner`` so file and database I/O stay off the event loop.

Emission is two-phase for diagnoses: a record is emitted once, and a later
``update_subclassification`` event may flip its ``has_subclassification`` flag
after a child diagnosis has been linked to it.

``finish_url`` closes a crawled URL. The URL is reported through
``on_durable`` only after the sink has made everything handed over before it
durable: the consumer flushes whenever it catches up with the producers, and a
batch commit in between releases the waiting URLs early. If a sink call fails,
the URLs whose events may have been dropped are still reported (so the crawl
can terminate) but are listed in ``lost_urls``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.clinical.icd11.sinks import RecordSink
from app.db.runner import BlockingRunner

logger = logging.getLogger(__name__)

DurableCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class EmittedRecord:
    record: BaseModel
    url: str | None = None


@dataclass(frozen=True)
class SubclassificationUpdate:
    diagnosis_id: int
    url: str | None = None


@dataclass(frozen=True)
class UrlFinished:
    url: str


_CLOSE = object()


class RecordEmitter:
    def __init__(self, sink: RecordSink, *, maxsize: int = 100, runner: BlockingRunner | None = None) -> None:
        self.sink = sink
        self.maxsize = max(1, int(maxsize))
        self.runner = runner if runner is not None else BlockingRunner()
        self.emitted: Counter[str] = Counter()
        self.updates = 0
        self.sink_errors = 0
        self.lost_urls: list[str] = []
        self._queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None
        self._on_durable: DurableCallback | None = None
        self._ended = False
        # URLs with events handed to the sink since it was last durable.
        self._uncommitted: set[str] = set()
        # Finished URLs waiting for the sink to become durable.
        self._waiting: list[str] = []
        # URLs whose events were dropped before their finish event arrived.
        self._dropped: set[str] = set()

    async def start(self, on_durable: DurableCallback | None = None) -> None:
        if self._consumer is not None:
            return
        self._on_durable = on_durable
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._consumer = asyncio.create_task(self._consume())

    async def emit(self, record: BaseModel, url: str | None = None) -> None:
        await self._put(EmittedRecord(record, url))

    async def update_subclassification(self, diagnosis_id: int, url: str | None = None) -> None:
        await self._put(SubclassificationUpdate(diagnosis_id, url))

    async def finish_url(self, url: str) -> None:
        await self._put(UrlFinished(url))

    async def close(self) -> None:
        """Drain pending events, then end the sink exactly once."""
        if self._consumer is not None:
            await self._queue.put(_CLOSE)
            await self._consumer
            self._consumer = None
        if not self._ended:
            self._ended = True
            await self.runner.run(self.sink.end)
            await self._release()

    async def _put(self, event: object) -> None:
        if self._consumer is None:
            raise RuntimeError("RecordEmitter.start() must be awaited before emitting")
        await self._queue.put(event)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is _CLOSE:
                    return
                await self._deliver(event)
                if self._queue.empty():
                    await self._flush()
            finally:
                self._queue.task_done()

    async def _sink_call(self, fn: Callable[..., Any], *args: Any) -> bool:
        try:
            await self.runner.run(fn, *args)
        except Exception:
            self.sink_errors += 1
            logger.exception("Record sink call %s failed", getattr(fn, "__name__", fn))
            return False
        return True

    async def _deliver(self, event: object) -> None:
        if isinstance(event, UrlFinished):
            await self._url_finished(event.url)
            return

        if isinstance(event, SubclassificationUpdate):
            ok = await self._sink_call(self.sink.update_subclassification, event.diagnosis_id)
            if ok:
                self.updates += 1
        else:
            ok = await self._sink_call(self.sink.emit, event.record)
            if ok:
                self.emitted[event.record.kind] += 1

        if not ok:
            await self._drop_uncommitted(event.url)
            return
        if event.url is not None:
            self._uncommitted.add(event.url)
        if self.sink.pending == 0:
            await self._release()

    async def _url_finished(self, url: str) -> None:
        if url in self._dropped:
            self._dropped.discard(url)
            await self._report_lost(url)
            return
        if not await self._sink_call(self.sink.acknowledge, url):
            await self._drop_uncommitted(url)
            return
        self._waiting.append(url)
        if self.sink.pending == 0:
            await self._release()

    async def _flush(self) -> None:
        if self.sink.pending and not await self._sink_call(self.sink.flush):
            await self._drop_uncommitted(None)
            return
        await self._release()

    async def _release(self) -> None:
        waiting, self._waiting = self._waiting, []
        self._uncommitted.clear()
        for url in waiting:
            await self._notify_durable(url)

    async def _drop_uncommitted(self, url: str | None) -> None:
        dropped = set(self._uncommitted)
        if url is not None:
            dropped.add(url)
        self._uncommitted.clear()

        waiting, self._waiting = self._waiting, []
        for finished in waiting:
            dropped.discard(finished)
            await self._report_lost(finished)
        self._dropped |= dropped

    async def _report_lost(self, url: str) -> None:
        logger.error("Records for %s were not stored", url)
        self.lost_urls.append(url)
        await self._notify_durable(url)

    async def _notify_durable(self, url: str) -> None:
        if self._on_durable is not None:
            await self._on_durable(url)
