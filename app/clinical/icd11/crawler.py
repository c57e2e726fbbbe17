"""ICD-11 crawl pipeline.

A bounded pool of workers draws URLs from the frontier and runs, per URL:
fetch -> record in the entity store -> classify -> resolve ancestors -> assign
ids -> emit -> enqueue children -> finish. Everything between recording the
entity and assigning its ids is synchronous, so a parent always has its ids
before any of its children can be claimed.

A URL is finished through the emitter, never completed directly: the frontier
marks it completed only once the sink holds its records durably.

Failure policy:
- a URL whose fetch is abandoned after retries is logged and finished; its
  children are never enqueued and the crawl continues;
- an unexpected error while processing one URL is logged and contained;
- ``AuthenticationError`` stops the run: workers are cancelled, in-flight URLs
  that emitted nothing go back to pending, URLs that already emitted are
  finished (their children enqueued first), the sink is still ended, and the
  error propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field

from app.clinical.icd11.classifier import is_linearization_root
from app.clinical.icd11.emitter import RecordEmitter
from app.clinical.icd11.entity_store import EntityStore
from app.clinical.icd11.errors import AuthenticationError, FetchError
from app.clinical.icd11.fetcher import Icd11Fetcher
from app.clinical.icd11.frontier import Frontier
from app.clinical.icd11.hierarchy import HierarchyResolver
from app.clinical.icd11.id_assigner import IdAssigner
from app.clinical.icd11.validation import ValidationReport

logger = logging.getLogger(__name__)


@dataclass
class CrawlSummary:
    fetched: int = 0
    duplicates: int = 0
    failed_urls: list[str] = field(default_factory=list)
    unsaved_urls: list[str] = field(default_factory=list)
    emitted: Counter = field(default_factory=Counter)
    subclassification_updates: int = 0
    validation: ValidationReport = field(default_factory=ValidationReport)

    @property
    def failed(self) -> int:
        return len(self.failed_urls)


@dataclass
class _Emitted:
    """Work left for a URL whose record is already on the emitter queue."""

    children: list[str]
    subclassified_parent_id: int | None = None


class Icd11Crawler:
    def __init__(
        self,
        *,
        fetcher: Icd11Fetcher,
        frontier: Frontier,
        emitter: RecordEmitter,
        id_assigner: IdAssigner,
        store: EntityStore | None = None,
        concurrency: int = 5,
        progress_every: int = 500,
    ) -> None:
        self.fetcher = fetcher
        self.frontier = frontier
        self.emitter = emitter
        self.id_assigner = id_assigner
        self.store = store if store is not None else EntityStore()
        self.resolver = HierarchyResolver(self.store)
        self.concurrency = max(1, int(concurrency))
        self.progress_every = max(1, int(progress_every))
        self.summary = CrawlSummary()
        self._emitted: dict[str, _Emitted] = {}

    async def run(self, root_url: str) -> CrawlSummary:
        await self.emitter.start(on_durable=self.frontier.complete)
        await self.frontier.enqueue(root_url)

        workers = [asyncio.create_task(self._worker(n)) for n in range(self.concurrency)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self._finish_interrupted()
            await self._finish()
            raise

        await self._finish()
        logger.info(
            "ICD-11 crawl complete. fetched=%s duplicates=%s failed=%s emitted=%s updates=%s",
            self.summary.fetched,
            self.summary.duplicates,
            self.summary.failed,
            dict(self.summary.emitted),
            self.summary.subclassification_updates,
        )
        return self.summary

    async def _finish_interrupted(self) -> None:
        for url, leftover in list(self._emitted.items()):
            await self._after_emit(url, leftover)

    async def _finish(self) -> None:
        await self.emitter.close()
        self.summary.emitted = Counter(self.emitter.emitted)
        self.summary.subclassification_updates = self.emitter.updates
        self.summary.unsaved_urls = list(self.emitter.lost_urls)
        if self.summary.unsaved_urls:
            logger.error("%s URLs were processed but their records were not stored", len(self.summary.unsaved_urls))

    async def _worker(self, worker_no: int) -> None:
        while True:
            url = await self.frontier.claim_next()
            if url is None:
                logger.debug("Worker %s found the frontier empty", worker_no)
                return

            try:
                await self.process_url(url)
            except (asyncio.CancelledError, AuthenticationError):
                if url not in self._emitted:
                    await self.frontier.requeue(url)
                raise
            except Exception:
                logger.exception("Failed to process %s", url)
                self._emitted.pop(url, None)
                self.summary.failed_urls.append(url)
                await self.emitter.finish_url(url)

    async def process_url(self, url: str) -> None:
        result = await self.fetcher.fetch(url)
        if isinstance(result, FetchError):
            logger.error(
                "Abandoning %s after %s attempts (%s); its subtree is skipped",
                url,
                result.attempts,
                result.reason,
            )
            self.summary.failed_urls.append(url)
            await self.emitter.finish_url(url)
            return

        entity = result
        self.summary.fetched += 1
        if not self.store.record_if_new(entity):
            self.summary.duplicates += 1
            await self.emitter.finish_url(url)
            return

        if is_linearization_root(entity):
            logger.info("Linearization root %s: enqueueing %s top-level entities", url, len(entity.child))
            await self._after_emit(url, _Emitted(children=list(entity.child)))
            return

        classification = self.resolver.classify(entity)
        ancestors = self.resolver.resolve_ancestors(entity)
        assignment = self.id_assigner.assign(classification, entity, ancestors)
        self.summary.validation.check(entity, classification, ancestors)

        await self.emitter.emit(assignment.record, url)
        leftover = _Emitted(list(entity.child), assignment.subclassified_parent_id)
        self._emitted[url] = leftover
        await self._after_emit(url, leftover)

        if self.summary.fetched % self.progress_every == 0:
            logger.info(
                "Progress: fetched=%s failed=%s frontier=%s",
                self.summary.fetched,
                self.summary.failed,
                await self.frontier.counts(),
            )

    async def _after_emit(self, url: str, leftover: _Emitted) -> None:
        if leftover.subclassified_parent_id is not None:
            await self.emitter.update_subclassification(leftover.subclassified_parent_id, url)
            leftover.subclassified_parent_id = None

        for child_url in leftover.children:
            if not self.store.has_url(child_url):
                await self.frontier.enqueue(child_url)

        await self.emitter.finish_url(url)
        self._emitted.pop(url, None)
