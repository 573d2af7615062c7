"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.namaste import NamasteCode, TraditionalSystem
from app.models.icd11 import Icd11Code, Icd11CodeType
from app.models.concept_mapping import ConceptMapping, MappingEquivalence
from app.models.mapping_shortcut import NamasteMappingShortcut
from app.models.condition import ConditionRecord
from app.models.admin_job import AdminJob, JobStatus, JobType
from app.models.audit_log import AuditLog

__all__ = [
    "NamasteCode",
    "TraditionalSystem",
    "Icd11Code",
    "Icd11CodeType",
    "ConceptMapping",
    "MappingEquivalence",
    "NamasteMappingShortcut",
    "ConditionRecord",
    "AdminJob",
    "JobStatus",
    "JobType",
    "AuditLog",
]
