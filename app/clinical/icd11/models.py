"""ICD-11 SQLAlchemy models for ICD-11 Core.

One table per classification level. Identifiers are assigned by the crawler
(``IdAssigner``), not by the database, so primary keys never autoincrement.
Cross-level references are plain indexed integers: a reference is either an id
that was already assigned when the record was linked, or NULL.
"""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Icd11Chapter(Base):
    __tablename__ = "icd11_chapters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    version: Mapped[str] = mapped_column(String(32), nullable=False)
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)


class Icd11Section(Base):
    __tablename__ = "icd11_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    chapter_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)


class Icd11Subsection(Base):
    __tablename__ = "icd11_subsections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    chapter_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    section_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)


class Icd11Diagnosis(Base):
    __tablename__ = "icd11_diagnoses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    definition: Mapped[str | None] = mapped_column(Text, nullable=True)
    chapter_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    section_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    subsection_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    parent_diagnosis_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    has_subclassification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_infectious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_leaf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synonyms: Mapped[str | None] = mapped_column(Text, nullable=True)
    inclusions: Mapped[str | None] = mapped_column(Text, nullable=True)
    exclusions: Mapped[str | None] = mapped_column(Text, nullable=True)
    coding_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)
