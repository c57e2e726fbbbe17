from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from app.clinical.icd11.classifier import Classification
from app.clinical.icd11.hierarchy import Ancestors
from app.schemas.icd11 import Icd11Entity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationIssue:
    key: str | None
    url: str | None
    classification: str
    message: str


@dataclass
class ValidationReport:
    """Non-fatal linkage problems collected during a crawl."""

    issues: list[ValidationIssue] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.issues)

    def add(self, entity: Icd11Entity, classification: Classification, message: str) -> None:
        self.issues.append(
            ValidationIssue(
                key=entity.key,
                url=entity.source_url or entity.uri,
                classification=classification.value,
                message=message,
            )
        )

    def check(self, entity: Icd11Entity, classification: Classification, ancestors: Ancestors) -> None:
        if ancestors.cycle_detected:
            self.add(entity, classification, "cycle in parent chain")
        if classification is Classification.CHAPTER:
            return
        if ancestors.chapter is None:
            self.add(entity, classification, "no chapter ancestor resolved")
        if classification in (Classification.SUBSECTION, Classification.DIAGNOSIS) and ancestors.section is None:
            self.add(entity, classification, "no section ancestor resolved")

    def to_list(self) -> list[dict]:
        return [asdict(issue) for issue in self.issues]

    def log_summary(self) -> None:
        if not self.issues:
            logger.info("Validation report: no issues")
            return

        counts: dict[str, int] = {}
        for issue in self.issues:
            counts[issue.message] = counts.get(issue.message, 0) + 1
        for message, count in sorted(counts.items()):
            logger.warning("Validation report: %s x%s", message, count)
