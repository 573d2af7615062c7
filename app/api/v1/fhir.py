"""
Endpoints FHIR R4 del servidor de terminología (base /fhir).

Todas las rutas aceptan `_format=json|xml`. Los errores se devuelven como
OperationOutcome (ver handlers en app.main).
"""

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.fhir_format import fhir_response, resolve_format
from app.database import get_db
from app.models.namaste import TraditionalSystem
from app.services import condition_service, fhir_service

router = APIRouter()

FORMAT_QUERY = Query(None, alias="_format", description="json | xml")


def _parameter(body: dict | None, name: str) -> str | None:
    """Valor primitivo de un parámetro en un recurso Parameters."""
    if not body or body.get("resourceType") != "Parameters":
        return None
    for parameter in body.get("parameter") or []:
        if parameter.get("name") != name:
            continue
        for key, value in parameter.items():
            if key.startswith("value"):
                return str(value)
    return None


# ── Metadata ─────────────────────────────────────────


@router.get("/metadata")
async def capability_statement(_format: str | None = FORMAT_QUERY):
    fmt = resolve_format(_format)
    return fhir_response(fhir_service.capability_statement(), fmt)


# ── CodeSystem ───────────────────────────────────────


@router.get("/CodeSystem/namaste-codes")
async def namaste_code_system(
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await fhir_service.namaste_code_system(db), fmt)


@router.get("/CodeSystem/$lookup")
async def lookup(
    system: str | None = Query(None),
    code: str | None = Query(None),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await fhir_service.lookup_operation(db, system, code), fmt)


@router.get("/CodeSystem/$validate-code")
async def validate_code(
    url: str | None = Query(None),
    code: str | None = Query(None),
    display: str | None = Query(None),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(
        await fhir_service.validate_code_operation(db, url, code, display), fmt
    )


@router.post("/CodeSystem/$validate-code")
async def validate_code_post(
    url: str | None = Query(None),
    code: str | None = Query(None),
    display: str | None = Query(None),
    body: dict | None = Body(None),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(
        await fhir_service.validate_code_operation(
            db,
            url or _parameter(body, "url"),
            code or _parameter(body, "code"),
            display or _parameter(body, "display"),
        ),
        fmt,
    )


# ── ConceptMap ───────────────────────────────────────


@router.get("/ConceptMap/namaste-to-icd11")
async def concept_map(
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(await fhir_service.namaste_to_icd11_concept_map(db), fmt)


@router.get("/ConceptMap/namaste-to-icd11/$translate")
async def translate(
    code: str | None = Query(None),
    system: str | None = Query(None),
    targetsystem: str | None = Query(None),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(
        await fhir_service.translate_operation(db, code, system, targetsystem), fmt
    )


@router.post("/ConceptMap/namaste-to-icd11/$translate")
async def translate_post(
    code: str | None = Query(None),
    system: str | None = Query(None),
    targetsystem: str | None = Query(None),
    body: dict | None = Body(None),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(
        await fhir_service.translate_operation(
            db,
            code or _parameter(body, "code"),
            system or _parameter(body, "system"),
            targetsystem or _parameter(body, "targetsystem"),
        ),
        fmt,
    )


# ── ValueSet ─────────────────────────────────────────


@router.get("/ValueSet/namaste")
async def namaste_value_set(
    filter: str | None = Query(None),
    system: TraditionalSystem | None = Query(None),
    _format: str | None = FORMAT_QUERY,
):
    fmt = resolve_format(_format)
    return fhir_response(fhir_service.namaste_value_set(filter, system), fmt)


@router.get("/ValueSet/namaste/$expand")
async def expand_value_set(
    filter: str | None = Query(None),
    system: TraditionalSystem | None = Query(None),
    offset: int = Query(0, ge=0),
    count: int = Query(100, ge=0),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    fmt = resolve_format(_format)
    return fhir_response(
        await fhir_service.expand_value_set(db, filter, system, offset, count), fmt
    )


# ── Condition / Bundle ───────────────────────────────


@router.post("/Condition")
async def create_condition(
    resource: dict = Body(...),
    _format: str | None = FORMAT_QUERY,
    db: AsyncSession = Depends(get_db),
):
    """Crea una Condition con codificación dual desde un recurso FHIR."""
    fmt = resolve_format(_format)
    record = await condition_service.create_condition_from_resource(db, resource)
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
