"""
Endpoints de lista de problemas con codificación dual (base /fhir/ProblemList).
"""

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.fhir_format import fhir_response, resolve_format
from app.database import get_db
from app.schemas.condition import (
    CreateConditionRequest,
    ValidateCodingRequest,
    ValidateCodingResponse,
)
from app.services import condition_service, fhir_service

router = APIRouter()

FORMAT_QUERY = Query(None, alias="_format", description="json | xml")


@router.post("/Condition")
async def create_dual_coded_condition(
    data: CreateConditionRequest,
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    """
    Crea una Condition a partir de un código NAMASTE. Las codificaciones
    CIE-11 (TM2 / Biomedicina) se agregan según los mapeos vigentes.
    """
    fmt = resolve_format(_format)
    record = await condition_service.create_dual_coded_condition(db, data)
    return fhir_response(
        fhir_service.condition_resource(record), fmt, status_code=status.HTTP_201_CREATED
    )


@router.post("/Bundle")
async def process_bundle(
    bundle: dict = Body(...),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await condition_service.process_bundle(db, bundle), fmt)


@router.get("/Condition")
async def patient_problem_list(
    patient: str = Query(..., min_length=1, description="Identificador del paciente"),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await condition_service.patient_problem_list(db, patient), fmt)


@router.get("/ValueSet/dual-coding-autocomplete")
async def dual_coding_autocomplete(
    term: str = Query(""),
    limit: int = Query(10, ge=1),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await condition_service.dual_coding_autocomplete(db, term, limit), fmt)


@router.get("/coding-suggestions")
async def coding_suggestions(
    term: str = Query(""),
    limit: int = Query(10, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Sugerencias NAMASTE con sus traducciones CIE-11 para el formulario clínico."""
    return await condition_service.coding_suggestions(db, term, limit)


@router.post("/validate-coding", response_model=ValidateCodingResponse)
async def validate_coding(
    data: ValidateCodingRequest,
    db: AsyncSession = Depends(get_db),
):
    return await condition_service.validate_dual_coding(
        db, data.namaste_code, data.icd11_code, data.system
    )
