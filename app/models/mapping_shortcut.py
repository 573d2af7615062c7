"""
Modelo NamasteMappingShortcut — Índice derivado del grafo de mapeos.

Guarda el mejor código TM2 y Biomedicina de cada código NAMASTE, indexado por
el código de origen (igual que las aristas del grafo). No es fuente de verdad:
se recalcula en la misma transacción que la escritura de mapeos.

Todo NAMASTE comparte una sola URI de sistema, así que dos códigos homónimos de
tradiciones distintas (p. ej. AYURVEDA y SIDDHA) comparten también el atajo.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.namaste import _utcnow


class NamasteMappingShortcut(Base):
    __tablename__ = "namaste_mapping_shortcuts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    icd11_tm2_code: Mapped[str | None] = mapped_column(String(64))
    icd11_biomedicine_code: Mapped[str | None] = mapped_column(String(64))
    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Shortcut {self.code} tm2={self.icd11_tm2_code} "
            f"bio={self.icd11_biomedicine_code}>"
        )
