"""
Modelo Icd11Code — Clasificación CIE-11 de la OMS.

Dos particiones: TM2 (Medicina Tradicional, capítulo 26) y BIOMEDICINE (MMS).
Se sincroniza desde la API de la OMS con upsert por (code_type, code).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.namaste import _utcnow


class Icd11CodeType(str, enum.Enum):
    TM2 = "TM2"
    BIOMEDICINE = "BIOMEDICINE"


class Icd11Code(Base):
    __tablename__ = "icd11_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(64), nullable=False,
        comment="Código CIE-11: SR11, 1A00, etc."
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    definition: Mapped[str | None] = mapped_column(Text)
    code_type: Mapped[Icd11CodeType] = mapped_column(
        Enum(Icd11CodeType), nullable=False,
        comment="TM2 o BIOMEDICINE"
    )
    parent_code: Mapped[str | None] = mapped_column(
        String(64),
        comment="Código padre dentro del mismo code_type"
    )
    chapter: Mapped[str | None] = mapped_column(String(200))
    synonyms: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), default=dict,
        comment="Sinónimos por idioma: {'en': '...', 'hi': '...'}"
    )
    foundation_uri: Mapped[str | None] = mapped_column(String(500))
    linearization_uri: Mapped[str | None] = mapped_column(String(500))

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("code_type", "code", name="uq_icd11_type_code"),
        Index("idx_icd11_code", "code"),
        Index("idx_icd11_type_chapter", "code_type", "chapter"),
    )

    def __repr__(self) -> str:
        return f"<Icd11Code {self.code_type.value}/{self.code}: {self.title[:50]}>"
