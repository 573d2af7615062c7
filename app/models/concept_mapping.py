"""
Modelo ConceptMapping — Arista dirigida del grafo de mapeos entre vocabularios.

Se almacena en una sola dirección (source → target). La búsqueda inversa usa
el índice secundario sobre (target_system, target_code).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.namaste import _utcnow


class MappingEquivalence(str, enum.Enum):
    """Equivalencias de ConceptMap (FHIR R4)."""
    RELATEDTO = "RELATEDTO"
    EQUIVALENT = "EQUIVALENT"
    EQUAL = "EQUAL"
    WIDER = "WIDER"
    SUBSUMES = "SUBSUMES"
    NARROWER = "NARROWER"
    SPECIALIZES = "SPECIALIZES"
    INEXACT = "INEXACT"
    UNMATCHED = "UNMATCHED"     # Sin destino utilizable
    DISJOINT = "DISJOINT"       # Afirmación negativa

    @property
    def rank(self) -> int:
        """Precisión relativa: mayor = correspondencia más exacta."""
        return EQUIVALENCE_RANK[self]

    @property
    def is_usable(self) -> bool:
        return self not in (MappingEquivalence.UNMATCHED, MappingEquivalence.DISJOINT)

    def inverse(self) -> "MappingEquivalence":
        """Equivalencia vista desde el destino hacia el origen."""
        return _INVERSE.get(self, self)

    @property
    def fhir_code(self) -> str:
        return self.value.lower()


EQUIVALENCE_RANK: dict[MappingEquivalence, int] = {
    MappingEquivalence.EQUAL: 6,
    MappingEquivalence.EQUIVALENT: 5,
    MappingEquivalence.SUBSUMES: 4,
    MappingEquivalence.SPECIALIZES: 4,
    MappingEquivalence.WIDER: 3,
    MappingEquivalence.NARROWER: 3,
    MappingEquivalence.RELATEDTO: 2,
    MappingEquivalence.INEXACT: 1,
    MappingEquivalence.UNMATCHED: 0,
    MappingEquivalence.DISJOINT: 0,
}

_INVERSE: dict[MappingEquivalence, MappingEquivalence] = {
    MappingEquivalence.WIDER: MappingEquivalence.NARROWER,
    MappingEquivalence.NARROWER: MappingEquivalence.WIDER,
    MappingEquivalence.SUBSUMES: MappingEquivalence.SPECIALIZES,
    MappingEquivalence.SPECIALIZES: MappingEquivalence.SUBSUMES,
}


class ConceptMapping(Base):
    __tablename__ = "concept_mappings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Origen / destino ─────────────────────────────
    source_system: Mapped[str] = mapped_column(String(255), nullable=False)
    source_code: Mapped[str] = mapped_column(String(64), nullable=False)
    target_system: Mapped[str] = mapped_column(String(255), nullable=False)
    target_code: Mapped[str] = mapped_column(String(64), nullable=False)

    # ── Semántica del mapeo ──────────────────────────
    equivalence: Mapped[MappingEquivalence] = mapped_column(
        Enum(MappingEquivalence), nullable=False
    )
    comment: Mapped[str | None] = mapped_column(Text)
    confidence_score: Mapped[float] = mapped_column(
        Float, nullable=False, default=1.0,
        comment="Confianza en [0, 1]"
    )
    mapping_version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    is_automatic: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="True si fue generado por el job de mapeo automático"
    )

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # ── Índices ──────────────────────────────────────
    __table_args__ = (
        UniqueConstraint(
            "source_system", "source_code", "target_system", "target_code",
            name="uq_mapping_natural_key",
        ),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_mapping_confidence_range",
        ),
        Index("idx_mapping_source", "source_system", "source_code"),
        Index("idx_mapping_target", "target_system", "target_code"),
        Index("idx_mapping_systems", "source_system", "target_system"),
    )

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.source_system, self.source_code, self.target_system, self.target_code)

    def __repr__(self) -> str:
        return (
            f"<ConceptMapping {self.source_code} → {self.target_code} "
            f"[{self.equivalence.value} {self.confidence_score:.2f}]>"
        )
