"""Per-run identifier assignment and record linking.

One ``IdAssigner`` is created per crawl. It owns four independent counters
(chapter, section, subsection, diagnosis) that only ever increase, and the
entity-key -> id tables used to link a record to the ids of its ancestors.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import BaseModel

from app.clinical.icd11.classifier import Classification
from app.clinical.icd11.hierarchy import Ancestors
from app.schemas.icd11 import ChapterRecord, DiagnosisRecord, Icd11Entity, SectionRecord, SubsectionRecord

CODE_SEPARATOR = "."

INFECTIOUS_KEYWORDS = (
    "infection",
    "infectious",
    "virus",
    "viral",
    "bacteria",
    "bacterial",
    "pathogen",
    "parasitic",
)


def is_infectious(entity: Icd11Entity, chapter: Icd11Entity | None = None) -> bool:
    title = entity.title.lower()
    if any(keyword in title for keyword in INFECTIOUS_KEYWORDS):
        return True
    return chapter is not None and "infectious" in chapter.title.lower()


@dataclass(frozen=True)
class Assignment:
    record: BaseModel
    # Diagnosis id whose has_subclassification flag flips because of this record.
    subclassified_parent_id: int | None = None


class IdAssigner:
    def __init__(self, *, version: str, start_ids: Mapping[Classification, int] | None = None) -> None:
        self.version = version
        self._counters = {level: 0 for level in Classification}
        for level, start in (start_ids or {}).items():
            self._counters[level] = max(0, int(start))
        self._ids: dict[Classification, dict[str, int]] = {level: {} for level in Classification}
        self._diagnosis_ids_by_code: dict[str, int] = {}
        self._subclassified: set[int] = set()

    def last_id(self, level: Classification) -> int:
        return self._counters[level]

    def id_for(self, level: Classification, entity: Icd11Entity | None) -> int | None:
        if entity is None or entity.key is None:
            return None
        return self._ids[level].get(entity.key)

    def diagnosis_id_for_code(self, code: str) -> int | None:
        return self._diagnosis_ids_by_code.get(code)

    def assign(self, classification: Classification, entity: Icd11Entity, ancestors: Ancestors) -> Assignment:
        new_id = self._next_id(classification)
        if entity.key is not None:
            self._ids[classification][entity.key] = new_id

        chapter_id = self.id_for(Classification.CHAPTER, ancestors.chapter)
        section_id = self.id_for(Classification.SECTION, ancestors.section)

        if classification is Classification.CHAPTER:
            return Assignment(
                ChapterRecord(
                    id=new_id,
                    code=entity.code,
                    description=entity.title,
                    version=self.version,
                    uri=entity.uri,
                )
            )

        if classification is Classification.SECTION:
            return Assignment(
                SectionRecord(
                    id=new_id,
                    code=entity.code,
                    description=entity.title,
                    chapter_id=chapter_id,
                    uri=entity.uri,
                )
            )

        if classification is Classification.SUBSECTION:
            return Assignment(
                SubsectionRecord(
                    id=new_id,
                    code=entity.code,
                    description=entity.title,
                    chapter_id=chapter_id,
                    section_id=section_id,
                    uri=entity.uri,
                )
            )

        parent_id = self._parent_diagnosis_id(entity, ancestors)
        if entity.code:
            self._diagnosis_ids_by_code.setdefault(entity.code, new_id)

        flipped = None
        if parent_id is not None and parent_id not in self._subclassified:
            self._subclassified.add(parent_id)
            flipped = parent_id

        record = DiagnosisRecord(
            id=new_id,
            code=entity.code,
            description=entity.title,
            definition=entity.definition,
            chapter_id=chapter_id,
            section_id=section_id,
            subsection_id=self.id_for(Classification.SUBSECTION, ancestors.subsection),
            parent_diagnosis_id=parent_id,
            is_infectious=is_infectious(entity, ancestors.chapter),
            is_leaf=entity.is_leaf,
            synonyms=entity.synonyms,
            inclusions=entity.inclusions,
            exclusions=entity.exclusions,
            coding_notes=entity.coding_notes,
            uri=entity.uri,
        )
        return Assignment(record, subclassified_parent_id=flipped)

    def _next_id(self, level: Classification) -> int:
        self._counters[level] += 1
        return self._counters[level]

    def _parent_diagnosis_id(self, entity: Icd11Entity, ancestors: Ancestors) -> int | None:
        code = entity.code or ""
        if CODE_SEPARATOR in code:
            prefix = code.split(CODE_SEPARATOR, 1)[0]
            parent_id = self._diagnosis_ids_by_code.get(prefix)
            if parent_id is not None:
                return parent_id
        return self.id_for(Classification.DIAGNOSIS, ancestors.diagnosis)
