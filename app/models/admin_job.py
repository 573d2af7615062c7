"""
Modelo AdminJob — Estado observable de tareas administrativas en background.

Los triggers (recarga NAMASTE, sync CIE-11, generación de mapeos) solo
encolan el job; el resultado se consulta por polling sobre esta tabla.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.namaste import _utcnow


class JobType(str, enum.Enum):
    GENERATE_MAPPINGS = "generate_mappings"
    RELOAD_NAMASTE = "reload_namaste"
    SYNC_ICD11 = "sync_icd11"


class JobStatus(str, enum.Enum):
    """Estados de un job administrativo."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"   # Cancelación cooperativa en el siguiente checkpoint

    @property
    def is_finished(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class AdminJob(Base):
    __tablename__ = "admin_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_type: Mapped[JobType] = mapped_column(Enum(JobType), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), nullable=False, default=JobStatus.QUEUED
    )
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Resultado ────────────────────────────────────
    result: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), default=dict,
        comment="Contadores del job: {processed, inserted, skipped, ...}"
    )
    error_message: Mapped[str | None] = mapped_column(String(2000))

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_admin_jobs_type_status", "job_type", "status"),
    )

    def __repr__(self) -> str:
        return f"<AdminJob {self.id} {self.job_type.value} [{self.status.value}]>"
