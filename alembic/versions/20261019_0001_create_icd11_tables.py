"""Create ICD-11 record tables.

Revision ID: 20261019_0001
Revises: 
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "icd11_chapters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("uri", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_icd11_chapters_code"), "icd11_chapters", ["code"], unique=False)

    op.create_table(
        "icd11_sections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("chapter_id", sa.Integer(), nullable=True),
        sa.Column("uri", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_icd11_sections_code"), "icd11_sections", ["code"], unique=False)
    op.create_index(op.f("ix_icd11_sections_chapter_id"), "icd11_sections", ["chapter_id"], unique=False)

    op.create_table(
        "icd11_subsections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("chapter_id", sa.Integer(), nullable=True),
        sa.Column("section_id", sa.Integer(), nullable=True),
        sa.Column("uri", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_icd11_subsections_code"), "icd11_subsections", ["code"], unique=False)
    op.create_index(op.f("ix_icd11_subsections_chapter_id"), "icd11_subsections", ["chapter_id"], unique=False)
    op.create_index(op.f("ix_icd11_subsections_section_id"), "icd11_subsections", ["section_id"], unique=False)

    op.create_table(
        "icd11_diagnoses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("definition", sa.Text(), nullable=True),
        sa.Column("chapter_id", sa.Integer(), nullable=True),
        sa.Column("section_id", sa.Integer(), nullable=True),
        sa.Column("subsection_id", sa.Integer(), nullable=True),
        sa.Column("parent_diagnosis_id", sa.Integer(), nullable=True),
        sa.Column("has_subclassification", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_infectious", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_leaf", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("synonyms", sa.Text(), nullable=True),
        sa.Column("inclusions", sa.Text(), nullable=True),
        sa.Column("exclusions", sa.Text(), nullable=True),
        sa.Column("coding_notes", sa.Text(), nullable=True),
        sa.Column("uri", sa.Text(), nullable=True),
    )
    for column in ("code", "chapter_id", "section_id", "subsection_id", "parent_diagnosis_id"):
        op.create_index(op.f(f"ix_icd11_diagnoses_{column}"), "icd11_diagnoses", [column], unique=False)


def downgrade() -> None:
    for column in ("code", "chapter_id", "section_id", "subsection_id", "parent_diagnosis_id"):
        op.drop_index(op.f(f"ix_icd11_diagnoses_{column}"), table_name="icd11_diagnoses")
    op.drop_table("icd11_diagnoses")

    op.drop_index(op.f("ix_icd11_subsections_section_id"), table_name="icd11_subsections")
    op.drop_index(op.f("ix_icd11_subsections_chapter_id"), table_name="icd11_subsections")
    op.drop_index(op.f("ix_icd11_subsections_code"), table_name="icd11_subsections")
    op.drop_table("icd11_subsections")

    op.drop_index(op.f("ix_icd11_sections_chapter_id"), table_name="icd11_sections")
    op.drop_index(op.f("ix_icd11_sections_code"), table_name="icd11_sections")
    op.drop_table("icd11_sections")

    op.drop_index(op.f("ix_icd11_chapters_code"), table_name="icd11_chapters")
    op.drop_table("icd11_chapters")
