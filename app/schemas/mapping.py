"""
Schemas para el grafo de mapeos y la traducción entre vocabularios.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.concept_mapping import MappingEquivalence


# ── Create ───────────────────────────────────────────


class CreateMappingRequest(BaseModel):
    source_system: str = Field(..., min_length=1, description="URI o alias: NAMASTE, TM2, BIOMEDICINE")
    source_code: str = Field(..., min_length=1, max_length=64)
    target_system: str = Field(..., min_length=1)
    target_code: str = Field(..., min_length=1, max_length=64)
    equivalence: MappingEquivalence
    comment: str | None = None
    confidence_score: float | None = Field(
        None, ge=0.0, le=1.0, description="Confianza en [0, 1]. Por defecto 1.0 (manual)"
    )
    mapping_version: str | None = Field(None, max_length=20)


# ── Response ─────────────────────────────────────────


class MappingResponse(BaseModel):
    id: UUID
    source_system: str
    source_code: str
    target_system: str
    target_code: str
    equivalence: MappingEquivalence
    comment: str | None = None
    confidence_score: float
    mapping_version: str
    is_automatic: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TranslationCandidate(BaseModel):
    """Un candidato de traducción (directo, inverso o transitivo)."""
    source_system: str
    source_code: str
    target_system: str
    target_code: str
    target_display: str | None = None
    equivalence: MappingEquivalence
    confidence_score: float
    direction: Literal["forward", "reverse", "transitive"]
    via_code: str | None = Field(None, description="Código puente en traducciones transitivas")
    mapping_ids: list[UUID]
    created_at: datetime


# ── Estadísticas ─────────────────────────────────────


class TerminologyStats(BaseModel):
    namaste_code_count: int
    icd11_code_count: int
    mapping_count: int
    automatic_mapping_count: int
    ayurveda_count: int
    siddha_count: int
    unani_count: int
    tm2_count: int
    biomedicine_count: int
