"""
Schemas para el vocabulario NAMASTE.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.namaste import TraditionalSystem


# ── Upsert (ingesta) ─────────────────────────────────


class NamasteCodeUpsert(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    display: str = Field(..., min_length=1, max_length=500)
    definition: str | None = None
    system: TraditionalSystem
    category: str | None = Field(None, max_length=200)
    subcategory: str | None = Field(None, max_length=200)
    who_terminology_code: str | None = Field(None, max_length=64)
    version: str = "1.0"


# ── Response ─────────────────────────────────────────


class NamasteCodeResponse(BaseModel):
    id: UUID
    code: str
    display: str
    definition: str | None = None
    system: TraditionalSystem
    category: str | None = None
    subcategory: str | None = None
    who_terminology_code: str | None = None
    icd11_tm2_code: str | None = Field(
        None, description="Mejor mapeo TM2 vigente (derivado del grafo de mapeos)"
    )
    icd11_biomedicine_code: str | None = Field(
        None, description="Mejor mapeo Biomedicina vigente (derivado del grafo de mapeos)"
    )
    version: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class NamasteListResponse(BaseModel):
    """Respuesta paginada (páginas desde 0)."""
    items: list[NamasteCodeResponse]
    total: int
    page: int
    size: int
    pages: int
