"""
Schemas para Conditions con codificación dual (NAMASTE + CIE-11).
"""

from typing import Literal

from pydantic import BaseModel, Field

from app.models.icd11 import Icd11CodeType

ClinicalStatus = Literal["active", "inactive", "resolved"]
VerificationStatus = Literal[
    "provisional", "differential", "confirmed", "refuted", "entered-in-error", "unknown",
]


class CreateConditionRequest(BaseModel):
    namaste_code: str = Field(..., min_length=1, max_length=64, description="Código NAMASTE")
    patient_id: str = Field(..., min_length=1, max_length=100)
    clinical_status: ClinicalStatus | None = None
    verification_status: VerificationStatus | None = None
    onset_date: str | None = Field(None, description="Fecha ISO-8601 de inicio")
    notes: str | None = None


class ValidateCodingRequest(BaseModel):
    namaste_code: str = Field(..., min_length=1)
    icd11_code: str = Field(..., min_length=1)
    system: Icd11CodeType = Icd11CodeType.TM2


class ValidateCodingResponse(BaseModel):
    valid: bool
    errors: list[str]
    mapping_id: str | None = None
    equivalence: str | None = None
