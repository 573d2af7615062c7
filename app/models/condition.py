"""
Modelo ConditionRecord — Condition FHIR con codificación dual persistida.

Las codificaciones (NAMASTE + CIE-11 TM2/Biomedicina) son una foto del grafo
de mapeos en el momento de creación: no se recalculan después.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.namaste import _utcnow


class ConditionRecord(Base):
    __tablename__ = "conditions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[str] = mapped_column(
        String(100), nullable=False,
        comment="Identificador del paciente (ABHA / Health ID)"
    )
    namaste_code: Mapped[str] = mapped_column(String(64), nullable=False)
    clinical_status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    verification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="confirmed"
    )
    onset: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    note: Mapped[str | None] = mapped_column(Text)
    codings: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list,
        comment="[{system, code, display}] — NAMASTE primero"
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_conditions_patient", "patient_id", "recorded_at"),
    )

    def __repr__(self) -> str:
        return f"<ConditionRecord {self.id} patient={self.patient_id} codings={len(self.codings)}>"
