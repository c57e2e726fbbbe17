"""ICD-11 model import shim.

ICD-11 Core's record models live in the crawler module.
This shim provides a stable import path (app.models.icd11) for:
- Alembic model registration
- sinks and the read API

Do not import app.db.models from this module.
"""

from app.clinical.icd11.models import Icd11Chapter, Icd11Diagnosis, Icd11Section, Icd11Subsection

__all__ = ["Icd11Chapter", "Icd11Section", "Icd11Subsection", "Icd11Diagnosis"]
