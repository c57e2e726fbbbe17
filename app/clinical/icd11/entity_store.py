"""In-memory table of fetched ICD-11 entities.

Entities are indexed by key (code, or URL for code-less groupings) and by every
URL they are known under, so ancestor resolution is a dictionary lookup.
All methods are synchronous: on the asyncio event loop each call runs to
completion without interleaving, which makes ``record_if_new`` a
first-writer-wins operation across concurrent workers.
"""

from __future__ import annotations

import logging

from app.schemas.icd11 import Icd11Entity

logger = logging.getLogger(__name__)


class EntityStore:
    def __init__(self) -> None:
        self._by_key: dict[str, Icd11Entity] = {}
        self._by_code: dict[str, Icd11Entity] = {}
        self._by_url: dict[str, Icd11Entity] = {}

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, entity: Icd11Entity) -> bool:
        return entity.key is not None and entity.key in self._by_key

    def record_if_new(self, entity: Icd11Entity) -> bool:
        key = entity.key
        if key is None:
            logger.warning("Entity without code or URL ignored: title=%s", entity.title)
            return False

        existing = self._by_key.get(key)
        if existing is not None:
            # Same entity reached through another URL: remember the alias.
            for url in entity.identity_urls:
                self._by_url.setdefault(url, existing)
            return False

        self._by_key[key] = entity
        if entity.code:
            self._by_code[entity.code] = entity
        for url in entity.identity_urls:
            self._by_url.setdefault(url, entity)
        return True

    def lookup_by_url(self, url: str) -> Icd11Entity | None:
        return self._by_url.get(url)

    def lookup_by_code(self, code: str) -> Icd11Entity | None:
        return self._by_code.get(code)

    def has_url(self, url: str) -> bool:
        return url in self._by_url
