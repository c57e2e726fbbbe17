"""Record sinks: where classified ICD-11 records end up.

A sink receives these calls, always from a single consumer:

- ``emit(record)`` once per classified record;
- ``update_subclassification(diagnosis_id)`` when a diagnosis that was already
  emitted gains a child diagnosis (its ``has_subclassification`` becomes true);
- ``acknowledge(url)`` once a crawled URL's records and updates were all handed
  over;
- ``flush()`` to make everything handed over so far durable;
- ``end()`` once, after the crawl finished.

``pending`` counts what was accepted but is not durable yet. The crawl only
marks a URL completed in the frontier once ``pending`` drops to zero after its
acknowledgement, so an interrupted run never skips a URL whose records were
lost. Append-only sinks cannot mutate what they already wrote, so each one
states how it honours the update call.
"""

from __future__ import annotations

import csv
import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import IO

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.clinical.icd11.classifier import Classification
from app.models.crawl_frontier import STATUS_COMPLETED, STATUS_IN_PROGRESS, CrawlFrontierItem
from app.models.icd11 import Icd11Chapter, Icd11Diagnosis, Icd11Section, Icd11Subsection
from app.schemas.icd11 import (
    ChapterRecord,
    DiagnosisRecord,
    SectionRecord,
    SubsectionRecord,
    record_to_row,
)

logger = logging.getLogger(__name__)

RECORD_TYPES: dict[str, type[BaseModel]] = {
    "chapter": ChapterRecord,
    "section": SectionRecord,
    "subsection": SubsectionRecord,
    "diagnosis": DiagnosisRecord,
}

CSV_FILENAMES = {
    "chapter": "chapters.csv",
    "section": "sections.csv",
    "subsection": "subsections.csv",
    "diagnosis": "diagnoses.csv",
}


class RecordSink(ABC):
    pending: int = 0

    @abstractmethod
    def emit(self, record: BaseModel) -> None: ...

    @abstractmethod
    def update_subclassification(self, diagnosis_id: int) -> None: ...

    @abstractmethod
    def end(self) -> None: ...

    def acknowledge(self, url: str) -> None:
        return None

    def flush(self) -> None:
        return None


class CollectingRecordSink(RecordSink):
    """Keeps every record in memory; updates mutate the stored diagnosis."""

    def __init__(self) -> None:
        self.records: list[BaseModel] = []
        self.ended = 0
        self._diagnoses: dict[int, DiagnosisRecord] = {}

    def emit(self, record: BaseModel) -> None:
        self.records.append(record)
        if isinstance(record, DiagnosisRecord):
            self._diagnoses[record.id] = record

    def update_subclassification(self, diagnosis_id: int) -> None:
        diagnosis = self._diagnoses.get(diagnosis_id)
        if diagnosis is None:
            logger.warning("Subclassification update for unknown diagnosis id=%s", diagnosis_id)
            return
        diagnosis.has_subclassification = True

    def end(self) -> None:
        self.ended += 1

    def of_kind(self, kind: str) -> list[BaseModel]:
        return [r for r in self.records if r.kind == kind]


class CsvRecordSink(RecordSink):
    """One CSV file per classification level inside ``directory``.

    Rows are streamed as they arrive. Subclassification updates are collected
    and applied at ``end()`` by rewriting ``diagnoses.csv`` once.
    """

    def __init__(self, directory: str | os.PathLike) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._files: dict[str, IO[str]] = {}
        self._writers: dict[str, csv.DictWriter] = {}
        self._subclassified: set[int] = set()

        for kind, record_type in RECORD_TYPES.items():
            f = open(self.directory / CSV_FILENAMES[kind], "w", encoding="utf-8", newline="")
            writer = csv.DictWriter(f, fieldnames=list(record_type.model_fields))
            writer.writeheader()
            self._files[kind] = f
            self._writers[kind] = writer

    def emit(self, record: BaseModel) -> None:
        self._writers[record.kind].writerow(record_to_row(record))

    def update_subclassification(self, diagnosis_id: int) -> None:
        self._subclassified.add(diagnosis_id)

    def flush(self) -> None:
        for f in self._files.values():
            f.flush()

    def end(self) -> None:
        for f in self._files.values():
            f.close()
        if self._subclassified:
            self._apply_subclassification()
        logger.info("CSV dump written to %s", self.directory.as_posix())

    def _apply_subclassification(self) -> None:
        path = self.directory / CSV_FILENAMES["diagnosis"]
        tmp_path = path.with_suffix(".csv.tmp")
        with open(path, encoding="utf-8", newline="") as src, open(tmp_path, "w", encoding="utf-8", newline="") as dst:
            reader = csv.DictReader(src)
            writer = csv.DictWriter(dst, fieldnames=reader.fieldnames or [])
            writer.writeheader()
            for row in reader:
                if int(row["id"]) in self._subclassified:
                    row["has_subclassification"] = "True"
                writer.writerow(row)
        os.replace(tmp_path, path)


class JsonRecordSink(RecordSink):
    """A single streamed JSON array.

    Records are written as they arrive; updates are appended as
    ``{"kind": "diagnosis_update", ...}`` elements for the consumer to apply.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8")
        self._file.write("[")
        self._first = True

    def _write(self, payload: dict) -> None:
        if not self._first:
            self._file.write(",")
        self._file.write("\n")
        self._file.write(json.dumps(payload, ensure_ascii=False, indent=2))
        self._first = False

    def emit(self, record: BaseModel) -> None:
        self._write(record.model_dump())

    def update_subclassification(self, diagnosis_id: int) -> None:
        self._write({"kind": "diagnosis_update", "diagnosis_id": diagnosis_id, "has_subclassification": True})

    def flush(self) -> None:
        self._file.flush()

    def end(self) -> None:
        self._file.write("\n]\n")
        self._file.close()
        logger.info("JSON dump written to %s", self.path.as_posix())


TABLES_BY_KIND = {
    "chapter": Icd11Chapter,
    "section": Icd11Section,
    "subsection": Icd11Subsection,
    "diagnosis": Icd11Diagnosis,
}


class DatabaseRecordSink(RecordSink):
    """Inserts records into the ``icd11_*`` tables with batched commits.

    Subclassification flags are applied with one UPDATE per batch, right before
    the commit. With ``track_frontier`` the acknowledged URLs are marked
    completed in ``crawl_frontier`` inside that same transaction, so a crash
    can never leave a URL completed whose rows were not written, nor rows
    written whose URL is still claimable.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        batch_size: int = 500,
        track_frontier: bool = False,
    ) -> None:
        self.db: Session = session_factory()
        self.batch_size = max(1, int(batch_size))
        self.track_frontier = track_frontier
        self.pending = 0
        self.inserted = 0
        self._records = 0
        self._subclassified: list[int] = []
        self._acknowledged: list[str] = []

    def id_high_water_marks(self) -> dict[Classification, int]:
        """Largest id already stored per level, to continue numbering on resume."""
        marks: dict[Classification, int] = {}
        for kind, table in TABLES_BY_KIND.items():
            marks[Classification(kind)] = self.db.execute(select(func.max(table.id))).scalar() or 0
        return marks

    def emit(self, record: BaseModel) -> None:
        row = record_to_row(record)
        row.pop("kind")
        self.db.add(TABLES_BY_KIND[record.kind](**row))
        self._records += 1
        self._queued()

    def update_subclassification(self, diagnosis_id: int) -> None:
        self._subclassified.append(diagnosis_id)
        self._queued()

    def acknowledge(self, url: str) -> None:
        if not self.track_frontier:
            return
        self._acknowledged.append(url)
        self._queued()

    def flush(self) -> None:
        if self.pending:
            self._commit()

    def end(self) -> None:
        try:
            self._commit()
            logger.info("Database dump complete. Inserted rows=%s", self.inserted)
        finally:
            self.db.close()

    def _queued(self) -> None:
        self.pending += 1
        if self.pending >= self.batch_size:
            self._commit()

    def _commit(self) -> None:
        unknown = 0
        try:
            self.db.flush()
            if self._subclassified:
                ids = set(self._subclassified)
                result = self.db.execute(
                    update(Icd11Diagnosis)
                    .where(Icd11Diagnosis.id.in_(ids))
                    .values(has_subclassification=True)
                    .execution_options(synchronize_session=False)
                )
                unknown = len(ids) - (result.rowcount or 0)
            if self._acknowledged:
                self.db.execute(
                    update(CrawlFrontierItem)
                    .where(
                        CrawlFrontierItem.url.in_(self._acknowledged),
                        CrawlFrontierItem.status == STATUS_IN_PROGRESS,
                    )
                    .values(status=STATUS_COMPLETED)
                    .execution_options(synchronize_session=False)
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self._reset()
            logger.exception("Failed committing ICD-11 record batch")
            raise

        if unknown:
            logger.warning("Subclassification update matched no diagnosis for %s ids", unknown)
        self.inserted += self._records
        self._reset()

    def _reset(self) -> None:
        self.pending = 0
        self._records = 0
        self._subclassified = []
        self._acknowledged = []
