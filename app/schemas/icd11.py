from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LEADING_DASHES_RE = re.compile(r"^[-\s]+")


def _language_value(value: object) -> str:
    """Unwrap a JSON-LD ``{"@language": ..., "@value": ...}`` string."""
    if value is None:
        return ""
    if isinstance(value, dict):
        if "label" in value:
            return _language_value(value["label"])
        return str(value.get("@value") or "").strip()
    return str(value).strip()


def _label_list(value: object) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    labels = [_language_value(item) for item in items]
    return [label for label in labels if label]


class Icd11Entity(BaseModel):
    """One node of the ICD-11 linearization as returned by the WHO API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    uri: str | None = Field(default=None, alias="@id")
    index: str | None = None
    code: str | None = None
    title: str = ""
    definition: str = ""
    class_kind: str | None = Field(default=None, alias="classKind")
    parent: list[str] = Field(default_factory=list)
    child: list[str] = Field(default_factory=list)
    is_leaf: bool = Field(default=False, alias="isLeaf")
    depth_in_kind: int | None = Field(default=None, alias="depthInKind")
    block_id: str | None = Field(default=None, alias="blockId")
    browser_url: str | None = Field(default=None, alias="browserUrl")
    synonyms: list[str] = Field(default_factory=list, alias="synonym")
    inclusions: list[str] = Field(default_factory=list, alias="inclusion")
    exclusions: list[str] = Field(default_factory=list, alias="exclusion")
    coding_notes: list[str] = Field(default_factory=list, alias="codingNote")
    source_url: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value: object) -> str:
        return _LEADING_DASHES_RE.sub("", _language_value(value)).strip()

    @field_validator("definition", mode="before")
    @classmethod
    def _unwrap_definition(cls, value: object) -> str:
        return _language_value(value)

    @field_validator("code", "uri", "index", "class_kind", "block_id", "browser_url", mode="before")
    @classmethod
    def _strip_optional(cls, value: object) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("parent", "child", mode="before")
    @classmethod
    def _url_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        items = value if isinstance(value, list) else [value]
        return [str(item).strip() for item in items if item and str(item).strip()]

    @field_validator("synonyms", "inclusions", "exclusions", "coding_notes", mode="before")
    @classmethod
    def _labels(cls, value: object) -> list[str]:
        return _label_list(value)

    @property
    def key(self) -> str | None:
        """Stable identity: the code, or a URL for code-less grouping nodes."""
        return self.code or self.uri or self.index or self.source_url

    @property
    def identity_urls(self) -> list[str]:
        return [url for url in (self.uri, self.index, self.source_url) if url]

    @property
    def primary_parent(self) -> str | None:
        return self.parent[0] if self.parent else None


class ChapterRecord(BaseModel):
    kind: Literal["chapter"] = "chapter"
    id: int
    code: str | None = None
    description: str = ""
    version: str
    uri: str | None = None


class SectionRecord(BaseModel):
    kind: Literal["section"] = "section"
    id: int
    code: str | None = None
    description: str = ""
    chapter_id: int | None = None
    uri: str | None = None


class SubsectionRecord(BaseModel):
    kind: Literal["subsection"] = "subsection"
    id: int
    code: str | None = None
    description: str = ""
    chapter_id: int | None = None
    section_id: int | None = None
    uri: str | None = None


class DiagnosisRecord(BaseModel):
    kind: Literal["diagnosis"] = "diagnosis"
    id: int
    code: str | None = None
    description: str = ""
    definition: str = ""
    chapter_id: int | None = None
    section_id: int | None = None
    subsection_id: int | None = None
    parent_diagnosis_id: int | None = None
    has_subclassification: bool = False
    is_infectious: bool = False
    is_leaf: bool = False
    synonyms: list[str] = Field(default_factory=list)
    inclusions: list[str] = Field(default_factory=list)
    exclusions: list[str] = Field(default_factory=list)
    coding_notes: list[str] = Field(default_factory=list)
    uri: str | None = None


ClassifiedRecord = Annotated[
    Union[ChapterRecord, SectionRecord, SubsectionRecord, DiagnosisRecord],
    Field(discriminator="kind"),
]


def record_to_row(record: BaseModel) -> dict[str, Any]:
    """Flatten a record for tabular sinks (lists joined with '; ')."""
    row = record.model_dump()
    for key, value in row.items():
        if isinstance(value, list):
            row[key] = "; ".join(value)
    return row
