"""Read access to crawled ICD-11 records.

The crawler writes the ``icd11_*`` tables through ``DatabaseRecordSink``; these
helpers are what the HTTP layer uses to browse them.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.clinical.icd11.models import Icd11Chapter, Icd11Diagnosis, Icd11Section, Icd11Subsection
from app.models.crawl_frontier import CrawlFrontierItem


def list_chapters_in_session(db: Session) -> List[Icd11Chapter]:
    stmt = select(Icd11Chapter).order_by(Icd11Chapter.id.asc())
    return db.execute(stmt).scalars().all()


def get_chapter_in_session(db: Session, chapter_id: int) -> Optional[Icd11Chapter]:
    return db.get(Icd11Chapter, chapter_id)


def list_sections_in_session(db: Session, chapter_id: int) -> List[Icd11Section]:
    stmt = select(Icd11Section).where(Icd11Section.chapter_id == chapter_id).order_by(Icd11Section.id.asc())
    return db.execute(stmt).scalars().all()


def get_diagnosis_with_children_in_session(
    db: Session, code: str
) -> Tuple[Optional[Icd11Diagnosis], List[Icd11Diagnosis]]:
    c = code.strip()
    if not c:
        return None, []

    stmt = select(Icd11Diagnosis).where(Icd11Diagnosis.code == c).order_by(Icd11Diagnosis.id.asc()).limit(1)
    diagnosis = db.execute(stmt).scalar_one_or_none()
    if diagnosis is None:
        return None, []

    children_stmt = (
        select(Icd11Diagnosis)
        .where(Icd11Diagnosis.parent_diagnosis_id == diagnosis.id)
        .order_by(Icd11Diagnosis.id.asc())
    )
    return diagnosis, db.execute(children_stmt).scalars().all()


def frontier_counts_in_session(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(CrawlFrontierItem.status, func.count()).group_by(CrawlFrontierItem.status)
    ).all()
    counts = {"pending": 0, "in_progress": 0, "completed": 0}
    for status, count in rows:
        counts[status] = count
    return counts


def record_counts_in_session(db: Session) -> dict[str, int]:
    """Rows stored per classification level by the database sink."""
    counts = {}
    for kind, table in (
        ("chapter", Icd11Chapter),
        ("section", Icd11Section),
        ("subsection", Icd11Subsection),
        ("diagnosis", Icd11Diagnosis),
    ):
        counts[kind] = db.execute(select(func.count()).select_from(table)).scalar_one()
    return counts
