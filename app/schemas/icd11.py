"""
Schemas para la clasificación CIE-11 (TM2 y Biomedicina).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.icd11 import Icd11CodeType


class Icd11CodeUpsert(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=500)
    definition: str | None = None
    code_type: Icd11CodeType
    parent_code: str | None = Field(None, max_length=64)
    chapter: str | None = Field(None, max_length=200)
    synonyms: dict[str, str] | None = None
    foundation_uri: str | None = None
    linearization_uri: str | None = None


class Icd11CodeResponse(BaseModel):
    id: UUID
    code: str
    title: str
    definition: str | None = None
    code_type: Icd11CodeType
    parent_code: str | None = None
    chapter: str | None = None
    synonyms: dict[str, str] | None = None
    foundation_uri: str | None = None
    linearization_uri: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Icd11ListResponse(BaseModel):
    """Respuesta paginada (páginas desde 0)."""
    items: list[Icd11CodeResponse]
    total: int
    page: int
    size: int
    pages: int
