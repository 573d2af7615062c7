"""
Modelo NamasteCode — Vocabulario de medicina tradicional NAMASTE (AYUSH).

Tabla de referencia global. Se carga desde CSV (ingesta) y se actualiza
por upsert usando la clave natural (system, code).
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TraditionalSystem(str, enum.Enum):
    """Sistemas de medicina tradicional cubiertos por NAMASTE."""
    AYURVEDA = "AYURVEDA"
    SIDDHA = "SIDDHA"
    UNANI = "UNANI"


class NamasteCode(Base):
    __tablename__ = "namaste_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(64), nullable=False,
        comment="Código NAMASTE: AYU-001, SID-12, etc."
    )
    display: Mapped[str] = mapped_column(
        String(500), nullable=False,
        comment="Término preferido"
    )
    definition: Mapped[str | None] = mapped_column(Text)
    system: Mapped[TraditionalSystem] = mapped_column(
        Enum(TraditionalSystem), nullable=False,
        comment="AYURVEDA, SIDDHA o UNANI"
    )
    category: Mapped[str | None] = mapped_column(String(200))
    subcategory: Mapped[str | None] = mapped_column(String(200))
    who_terminology_code: Mapped[str | None] = mapped_column(
        String(64),
        comment="Código de la terminología estándar internacional de la OMS (ingestado)"
    )
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("system", "code", name="uq_namaste_system_code"),
        Index("idx_namaste_code", "code"),
        Index("idx_namaste_system_category", "system", "category"),
    )

    def __repr__(self) -> str:
        return f"<NamasteCode {self.system.value}/{self.code}: {self.display[:50]}>"
