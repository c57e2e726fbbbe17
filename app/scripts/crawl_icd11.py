from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path

import httpx
from sqlalchemy.orm import Session

from app.clinical.icd11.auth import CachedTokenProvider, ClientCredentialsTokenSource
from app.clinical.icd11.crawler import CrawlSummary, Icd11Crawler
from app.clinical.icd11.emitter import RecordEmitter
from app.clinical.icd11.errors import ConfigurationError, Icd11CrawlError
from app.clinical.icd11.fetcher import Icd11Fetcher
from app.clinical.icd11.frontier import Frontier, InMemoryFrontier, SqlFrontier
from app.clinical.icd11.id_assigner import IdAssigner
from app.clinical.icd11.sinks import CsvRecordSink, DatabaseRecordSink, JsonRecordSink, RecordSink
from app.core.config import Settings, settings
from app.db.runner import BlockingRunner

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("csv", "json", "db")


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _default_session_factory() -> Callable[[], Session]:
    # Imported lazily so file-only dumps never open a database engine.
    from app.db.session import SessionLocal

    return SessionLocal


def _create_tables(session_factory: Callable[[], Session]) -> None:
    from app.db.models import Base

    with session_factory() as db:
        Base.metadata.create_all(bind=db.get_bind())
    logger.info("ICD-11 tables ensured")


def build_sink(
    output_format: str,
    output_path: str,
    session_factory: Callable[[], Session] | None = None,
    *,
    track_frontier: bool = False,
) -> RecordSink:
    if output_format == "csv":
        return CsvRecordSink(output_path)
    if output_format == "json":
        path = Path(output_path)
        if path.suffix.lower() != ".json":
            path = path.with_suffix(".json")
        return JsonRecordSink(path)
    if output_format == "db":
        return DatabaseRecordSink(session_factory or _default_session_factory(), track_frontier=track_frontier)
    raise ConfigurationError(f"Unsupported output format: {output_format!r} (use one of {', '.join(OUTPUT_FORMATS)})")


async def run_crawl(
    config: Settings,
    *,
    output_format: str,
    output_path: str,
    resume: bool = False,
    create_tables: bool = False,
    session_factory: Callable[[], Session] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CrawlSummary:
    if not config.icd_client_id or not config.icd_client_secret:
        raise ConfigurationError("icd_client_id and icd_client_secret must be configured")
    if output_format not in OUTPUT_FORMATS:
        raise ConfigurationError(f"Unsupported output format: {output_format!r}")
    if resume and output_format != "db":
        # File dumps are rewritten from scratch while the frontier only returns unfinished URLs.
        raise ConfigurationError("--resume requires --format db")

    runner = BlockingRunner()
    if output_format == "db":
        if session_factory is None:
            session_factory = _default_session_factory()
        if create_tables:
            await runner.run(_create_tables, session_factory)

    sink = build_sink(output_format, output_path, session_factory, track_frontier=resume)

    start_ids = None
    if isinstance(sink, DatabaseRecordSink):
        start_ids = await runner.run(sink.id_high_water_marks)
        logger.info("Continuing ids after %s", {level.value: n for level, n in start_ids.items()})

    frontier: Frontier
    if resume:
        frontier = SqlFrontier(session_factory, runner=runner)
        await frontier.recover()
        logger.info("Resuming crawl; frontier=%s", await frontier.counts())
    else:
        frontier = InMemoryFrontier()

    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
        token_provider = CachedTokenProvider(
            ClientCredentialsTokenSource(
                client,
                token_url=config.icd_token_url,
                client_id=config.icd_client_id,
                client_secret=config.icd_client_secret,
                scope=config.icd_token_scope,
            ),
            expiry_margin=config.token_expiry_margin_seconds,
        )
        fetcher = Icd11Fetcher(
            client,
            token_provider,
            language=config.api_language,
            api_version=config.api_version,
            max_attempts=config.fetch_max_attempts,
            backoff_initial=config.fetch_backoff_initial_seconds,
            timeout=config.fetch_timeout_seconds,
        )
        crawler = Icd11Crawler(
            fetcher=fetcher,
            frontier=frontier,
            emitter=RecordEmitter(sink, maxsize=config.emit_queue_size, runner=runner),
            id_assigner=IdAssigner(version=config.icd_release, start_ids=start_ids),
            concurrency=config.crawl_concurrency,
        )
        return await crawler.run(config.root_url)


def _write_report(summary: CrawlSummary, path: str) -> None:
    payload = {
        "fetched": summary.fetched,
        "duplicates": summary.duplicates,
        "failed_urls": summary.failed_urls,
        "unsaved_urls": summary.unsaved_urls,
        "emitted": dict(summary.emitted),
        "subclassification_updates": summary.subclassification_updates,
        "issues": summary.validation.to_list(),
    }
    Path(path).write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Validation report written to %s", path)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch ICD-11 data and output chapters/sections/subsections/diagnoses")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, default=settings.output_format, help="Output format")
    parser.add_argument(
        "--output",
        default=settings.output_path,
        help="Output directory (csv) or file (json); ignored for db",
    )
    parser.add_argument("--language", default=settings.api_language, help="Accept-Language for the ICD API")
    parser.add_argument("--release", default=settings.icd_release, help="ICD-11 release id, e.g. 2024-01")
    parser.add_argument("--concurrency", type=int, default=settings.crawl_concurrency, help="Concurrent fetches")
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Use the persistent frontier in the database (requires --format db)",
    )
    parser.add_argument("--create-tables", action="store_true", help="Create missing ICD-11 tables first")
    parser.add_argument("--report", default=None, help="Write the crawl summary and validation issues as JSON")
    args = parser.parse_args(argv)

    _configure_logging()

    config = settings.model_copy(
        update={
            "api_language": args.language,
            "icd_release": args.release,
            "crawl_concurrency": args.concurrency,
        }
    )

    logger.info("Starting ICD-11 dump in %s format to %s (release=%s)", args.format.upper(), args.output, config.icd_release)

    try:
        summary = asyncio.run(
            run_crawl(
                config,
                output_format=args.format,
                output_path=args.output,
                resume=args.resume,
                create_tables=args.create_tables,
            )
        )
    except Icd11CrawlError as exc:
        logger.error("ICD-11 dump aborted: %s", exc)
        return 1

    summary.validation.log_summary()
    if summary.failed_urls:
        logger.warning("%s URLs could not be fetched; their subtrees are missing", summary.failed)
    if args.report:
        _write_report(summary, args.report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
