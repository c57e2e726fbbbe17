"""Canonical ICD-11 classification rule chain.

Every entity is assigned to exactly one of CHAPTER, SECTION, SUBSECTION or
DIAGNOSIS using the entity's ``classKind``. Rules are evaluated in order and
the first match wins:

1. ``chapter``                                   -> CHAPTER
2. ``block`` at depth-in-kind 1                  -> SECTION
   ``block`` at depth-in-kind 2 or deeper        -> SUBSECTION
3. ``subsection``, ``category``, ``precoordination`` -> SUBSECTION
4. ``morbidity``, ``mortality``, ``foundation``, or anything else -> DIAGNOSIS

The linearization root itself (no parent, no ``classKind``) is not classified:
the crawl records it so its children can be found, but emits no record for it,
because rule 4 would otherwise turn it into a diagnosis.

This is the only classification policy. Heuristics based on parent URL
substrings, code shape, or ``properties.bodySystem`` are not applied.
"""

from __future__ import annotations

from enum import Enum

from app.schemas.icd11 import Icd11Entity


class Classification(str, Enum):
    CHAPTER = "chapter"
    SECTION = "section"
    SUBSECTION = "subsection"
    DIAGNOSIS = "diagnosis"


CHAPTER_KINDS = frozenset({"chapter"})
BLOCK_KINDS = frozenset({"block"})
SUBSECTION_KINDS = frozenset({"subsection", "category", "precoordination"})
DIAGNOSIS_KINDS = frozenset({"morbidity", "mortality", "foundation"})


def is_block(entity: Icd11Entity) -> bool:
    return (entity.class_kind or "").lower() in BLOCK_KINDS


def is_linearization_root(entity: Icd11Entity) -> bool:
    return not entity.parent and not entity.class_kind


def classify(entity: Icd11Entity, depth_in_kind: int | None = None) -> Classification:
    """Classify ``entity``.

    ``depth_in_kind`` only matters for blocks. When not given, the entity's own
    ``depthInKind`` is used, and a block with no depth information at all is
    treated as a top-level (depth 1) grouping.
    """
    kind = (entity.class_kind or "").lower()

    if kind in CHAPTER_KINDS:
        return Classification.CHAPTER

    if kind in BLOCK_KINDS:
        depth = depth_in_kind if depth_in_kind is not None else entity.depth_in_kind
        if depth is None or depth <= 1:
            return Classification.SECTION
        return Classification.SUBSECTION

    if kind in SUBSECTION_KINDS:
        return Classification.SUBSECTION

    return Classification.DIAGNOSIS
