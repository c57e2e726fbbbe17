"""FastAPI router for ICD-11.

Browses the classification produced by the crawler (chapters, sections,
diagnoses) and reports the state of the persistent crawl frontier.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.clinical.icd11.service import (
    frontier_counts_in_session,
    get_chapter_in_session,
    get_diagnosis_with_children_in_session,
    list_chapters_in_session,
    list_sections_in_session,
    record_counts_in_session,
)
from app.db.session import get_db

router = APIRouter()


def _diagnosis_summary(item) -> Dict[str, Any]:
    return {
        "id": item.id,
        "code": item.code,
        "description": item.description,
        "has_subclassification": item.has_subclassification,
    }


@router.get("/chapters")
def chapters(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [
        {"id": c.id, "code": c.code, "description": c.description, "version": c.version}
        for c in list_chapters_in_session(db)
    ]


@router.get("/chapters/{chapter_id}/sections")
def chapter_sections(chapter_id: int, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    if get_chapter_in_session(db, chapter_id) is None:
        raise HTTPException(status_code=404, detail="ICD11 chapter not found")

    return [
        {"id": s.id, "code": s.code, "description": s.description, "chapter_id": s.chapter_id}
        for s in list_sections_in_session(db, chapter_id)
    ]


@router.get("/diagnoses/{code}")
def diagnosis_by_code(code: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    item, children = get_diagnosis_with_children_in_session(db, code=code)
    if not item:
        raise HTTPException(status_code=404, detail="ICD11 diagnosis not found")

    return {
        **_diagnosis_summary(item),
        "definition": item.definition,
        "chapter_id": item.chapter_id,
        "section_id": item.section_id,
        "subsection_id": item.subsection_id,
        "parent_diagnosis_id": item.parent_diagnosis_id,
        "is_infectious": item.is_infectious,
        "children": [_diagnosis_summary(child) for child in children],
    }


@router.get("/crawl/status")
def crawl_status(db: Session = Depends(get_db)) -> Dict[str, Any]:
    records = record_counts_in_session(db)
    return {
        "loaded": records["chapter"] > 0,
        "records": records,
        "frontier": frontier_counts_in_session(db),
    }
