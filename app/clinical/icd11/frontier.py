"""Crawl frontier: the deduplicated work queue of URLs.

Both implementations share the async claim/complete/requeue protocol defined by
``Frontier``; subclasses only provide the storage primitives, which ``_call``
runs (inline for the in-memory frontier, in a worker thread for the database).
``claim_next`` returns ``None`` only when nothing is pending and nothing is in
progress, which is the crawl's termination signal. While other workers still
hold URLs in progress it waits, because those URLs may enqueue more work.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import Any

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.runner import BlockingRunner
from app.models.crawl_frontier import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    CrawlFrontierItem,
)

logger = logging.getLogger(__name__)


class Frontier(ABC):
    # Seconds between re-checks while waiting; None waits for a local notification only.
    poll_interval: float | None = None

    def __init__(self) -> None:
        self._changed = asyncio.Condition()

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return fn(*args)

    async def enqueue(self, url: str) -> bool:
        async with self._changed:
            added = await self._call(self._add, url)
            if added:
                self._changed.notify_all()
            return added

    async def claim_next(self) -> str | None:
        async with self._changed:
            while True:
                url = await self._call(self._try_claim)
                if url is not None:
                    return url
                if not await self._call(self._has_in_progress):
                    return None
                if self.poll_interval is None:
                    await self._changed.wait()
                else:
                    try:
                        await asyncio.wait_for(self._changed.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass

    async def complete(self, url: str) -> None:
        async with self._changed:
            await self._call(self._mark, url, STATUS_IN_PROGRESS, STATUS_COMPLETED)
            self._changed.notify_all()

    async def requeue(self, url: str) -> None:
        async with self._changed:
            await self._call(self._mark, url, STATUS_IN_PROGRESS, STATUS_PENDING)
            self._changed.notify_all()

    async def counts(self) -> dict[str, int]:
        return await self._call(self._counts)

    @abstractmethod
    def _add(self, url: str) -> bool: ...

    @abstractmethod
    def _try_claim(self) -> str | None: ...

    @abstractmethod
    def _has_in_progress(self) -> bool: ...

    @abstractmethod
    def _mark(self, url: str, from_status: str, to_status: str) -> bool: ...

    @abstractmethod
    def _counts(self) -> dict[str, int]: ...


class InMemoryFrontier(Frontier):
    def __init__(self) -> None:
        super().__init__()
        self._status: dict[str, str] = {}
        self._pending: deque[str] = deque()
        self._in_progress = 0

    def status_of(self, url: str) -> str | None:
        return self._status.get(url)

    def _add(self, url: str) -> bool:
        if url in self._status:
            return False
        self._status[url] = STATUS_PENDING
        self._pending.append(url)
        return True

    def _try_claim(self) -> str | None:
        while self._pending:
            url = self._pending.popleft()
            if self._status.get(url) == STATUS_PENDING:
                self._status[url] = STATUS_IN_PROGRESS
                self._in_progress += 1
                return url
        return None

    def _has_in_progress(self) -> bool:
        return self._in_progress > 0

    def _mark(self, url: str, from_status: str, to_status: str) -> bool:
        if self._status.get(url) != from_status:
            return False
        self._status[url] = to_status
        if from_status == STATUS_IN_PROGRESS:
            self._in_progress -= 1
        if to_status == STATUS_PENDING:
            self._pending.append(url)
        return True

    def _counts(self) -> dict[str, int]:
        counts = {STATUS_PENDING: 0, STATUS_IN_PROGRESS: 0, STATUS_COMPLETED: 0}
        for status in self._status.values():
            counts[status] += 1
        return counts


class SqlFrontier(Frontier):
    """Frontier persisted in the ``crawl_frontier`` table.

    Claiming is a compare-and-set UPDATE on (url, status='pending'), so two
    workers, or two crawler processes sharing the database, can never hold the
    same URL in progress.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        poll_interval: float = 1.0,
        runner: BlockingRunner | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self.poll_interval = poll_interval
        self.runner = runner if runner is not None else BlockingRunner()

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await self.runner.run(fn, *args)

    async def recover(self) -> int:
        """Reset rows left in progress by an interrupted run back to pending."""
        return await self._call(self._recover)

    def _recover(self) -> int:
        with self._session_factory() as db:
            result = db.execute(
                update(CrawlFrontierItem)
                .where(CrawlFrontierItem.status == STATUS_IN_PROGRESS)
                .values(status=STATUS_PENDING)
            )
            db.commit()
            reset = result.rowcount or 0
        if reset:
            logger.info("Frontier recovery reset %s in-progress URLs to pending", reset)
        return reset

    def status_of(self, url: str) -> str | None:
        with self._session_factory() as db:
            return db.execute(
                select(CrawlFrontierItem.status).where(CrawlFrontierItem.url == url)
            ).scalar_one_or_none()

    def _add(self, url: str) -> bool:
        with self._session_factory() as db:
            if db.get(CrawlFrontierItem, url) is not None:
                return False
            db.add(CrawlFrontierItem(url=url, status=STATUS_PENDING))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def _try_claim(self) -> str | None:
        with self._session_factory() as db:
            while True:
                url = db.execute(
                    select(CrawlFrontierItem.url)
                    .where(CrawlFrontierItem.status == STATUS_PENDING)
                    .order_by(CrawlFrontierItem.updated_at, CrawlFrontierItem.url)
                    .limit(1)
                ).scalar_one_or_none()
                if url is None:
                    return None

                result = db.execute(
                    update(CrawlFrontierItem)
                    .where(CrawlFrontierItem.url == url, CrawlFrontierItem.status == STATUS_PENDING)
                    .values(status=STATUS_IN_PROGRESS)
                )
                db.commit()
                if result.rowcount == 1:
                    return url

    def _has_in_progress(self) -> bool:
        with self._session_factory() as db:
            return bool(
                db.execute(
                    select(exists().where(CrawlFrontierItem.status == STATUS_IN_PROGRESS))
                ).scalar()
            )

    def _mark(self, url: str, from_status: str, to_status: str) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                update(CrawlFrontierItem)
                .where(CrawlFrontierItem.url == url, CrawlFrontierItem.status == from_status)
                .values(status=to_status)
            )
            db.commit()
            return result.rowcount == 1

    def _counts(self) -> dict[str, int]:
        counts = {STATUS_PENDING: 0, STATUS_IN_PROGRESS: 0, STATUS_COMPLETED: 0}
        with self._session_factory() as db:
            rows = db.execute(
                select(CrawlFrontierItem.status, func.count()).group_by(CrawlFrontierItem.status)
            ).all()
        for status, count in rows:
            counts[status] = count
        return counts
