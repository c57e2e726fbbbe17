"""Ancestor resolution over the entity store.

Multi-parent entities are reduced to their primary (first) parent. Climbing
stops at the first chapter, at the linearization root, at a parent that has
not been fetched yet, or when an entity is revisited (cycle). In every case the
levels found so far are returned; resolution never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.clinical.icd11.classifier import Classification, classify, is_block, is_linearization_root
from app.clinical.icd11.entity_store import EntityStore
from app.schemas.icd11 import Icd11Entity

logger = logging.getLogger(__name__)


@dataclass
class Ancestors:
    chapter: Icd11Entity | None = None
    section: Icd11Entity | None = None
    subsection: Icd11Entity | None = None
    diagnosis: Icd11Entity | None = None
    cycle_detected: bool = False
    unresolved_parent: str | None = None


class HierarchyResolver:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def classify(self, entity: Icd11Entity) -> Classification:
        if is_block(entity) and entity.depth_in_kind is None:
            return classify(entity, depth_in_kind=self.block_depth(entity))
        return classify(entity)

    def block_depth(self, entity: Icd11Entity) -> int:
        """1 + the number of consecutive block ancestors above ``entity``."""
        depth = 1
        visited = {entity.key}
        current = entity
        while True:
            parent = self._parent_of(current)
            if parent is None or not is_block(parent) or parent.key in visited:
                return depth
            if parent.depth_in_kind is not None:
                return parent.depth_in_kind + depth
            visited.add(parent.key)
            depth += 1
            current = parent

    def resolve_ancestors(self, entity: Icd11Entity) -> Ancestors:
        found = Ancestors()
        visited = {entity.key}
        current = entity

        while True:
            parent_url = current.primary_parent
            if not parent_url:
                break

            parent = self.store.lookup_by_url(parent_url)
            if parent is None:
                found.unresolved_parent = parent_url
                break
            if is_linearization_root(parent):
                break

            if parent.key in visited:
                logger.warning(
                    "Cycle in parent chain of %s at %s; keeping partial ancestors",
                    entity.key,
                    parent.key,
                )
                found.cycle_detected = True
                break
            visited.add(parent.key)

            level = self.classify(parent)
            if level is Classification.CHAPTER:
                found.chapter = parent
                break
            if level is Classification.SECTION and found.section is None:
                found.section = parent
            elif level is Classification.SUBSECTION and found.subsection is None:
                found.subsection = parent
            elif level is Classification.DIAGNOSIS and found.diagnosis is None:
                found.diagnosis = parent

            current = parent

        return found

    def _parent_of(self, entity: Icd11Entity) -> Icd11Entity | None:
        parent_url = entity.primary_parent
        if not parent_url:
            return None
        return self.store.lookup_by_url(parent_url)
