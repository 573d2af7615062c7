"""
Flujo de codificación dual: Conditions con NAMASTE + CIE-11 (TM2 / Biomedicina).

Las codificaciones CIE-11 se resuelven con el traductor al momento de crear
la Condition y se guardan como foto; cambios posteriores del grafo no las
alteran.
"""

import logging
from datetime import timezone

from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import ValidationException
from app.models.condition import ConditionRecord
from app.models.icd11 import Icd11CodeType
from app.models.namaste import NamasteCode
from app.schemas.condition import CreateConditionRequest, ValidateCodingResponse
from app.services import code_registry_service as registry
from app.services import fhir_service, mapping_service, search_service, translation_service

settings = get_settings()
logger = logging.getLogger(__name__)


def _parse_onset(value: str | None):
    if not value:
        return None
    try:
        onset = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        raise ValidationException(f"Fecha de inicio inválida: '{value}'")
    if onset.tzinfo is None:
        onset = onset.replace(tzinfo=timezone.utc)
    return onset


async def resolve_codings(db: AsyncSession, namaste: NamasteCode) -> list[dict]:
    """NAMASTE primero, luego cada destino CIE-11 resuelto por el traductor."""
    codings = [fhir_service.coding(settings.NAMASTE_SYSTEM, namaste.code, namaste.display)]
    seen = {(settings.NAMASTE_SYSTEM, namaste.code)}

    for target_system in (settings.ICD11_TM2_SYSTEM, settings.ICD11_BIOMEDICINE_SYSTEM):
        candidates = await translation_service.translate(
            db, settings.NAMASTE_SYSTEM, namaste.code, target_system
        )
        for candidate in candidates:
            key = (candidate.target_system, candidate.target_code)
            if key in seen:
                continue
            seen.add(key)
            codings.append(
                fhir_service.coding(
                    candidate.target_system, candidate.target_code, candidate.target_display
                )
            )
    return codings


# ── Creación ─────────────────────────────────────────


async def create_dual_coded_condition(
    db: AsyncSession,
    data: CreateConditionRequest,
) -> ConditionRecord:
    """
    Crea una Condition con codificación dual.
    Sin mapeos, la Condition lleva solo la codificación NAMASTE.
    """
    namaste = await registry.get_namaste(db, data.namaste_code.strip())
    onset = _parse_onset(data.onset_date)
    codings = await resolve_codings(db, namaste)

    record = ConditionRecord(
        patient_id=data.patient_id.strip(),
        namaste_code=namaste.code,
        clinical_status=data.clinical_status or "active",
        verification_status=data.verification_status or "confirmed",
        onset=onset,
        note=data.notes or None,
        codings=codings,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)

    logger.info(
        f"Condition {record.id} creada para paciente {record.patient_id}: "
        f"{namaste.code} con {len(codings) - 1} codificación(es) CIE-11"
    )
    return record


def _first_code(concept: dict | None) -> str | None:
    for item in (concept or {}).get("coding") or []:
        if item.get("code"):
            return item["code"]
    return None


def _namaste_coding(resource: dict) -> dict | None:
    for item in (resource.get("code") or {}).get("coding") or []:
        system = item.get("system")
        if system in (settings.NAMASTE_SYSTEM, "NAMASTE") and item.get("code"):
            return item
    return None


async def create_condition_from_resource(db: AsyncSession, resource: dict) -> ConditionRecord:
    """
    Crea una Condition desde un recurso FHIR que trae una codificación NAMASTE
    y subject.reference = Patient/<id>.
    """
    if not isinstance(resource, dict) or resource.get("resourceType") != "Condition":
        raise ValidationException("Se esperaba un recurso Condition")

    namaste = _namaste_coding(resource)
    if namaste is None:
        raise ValidationException("La Condition no tiene codificación NAMASTE")

    reference = (resource.get("subject") or {}).get("reference") or ""
    if not reference.startswith("Patient/") or not reference[len("Patient/"):]:
        raise ValidationException("subject.reference debe tener la forma Patient/<id>")

    notes = [n.get("text") for n in resource.get("note") or [] if n.get("text")]
    try:
        request = CreateConditionRequest(
            namaste_code=namaste["code"],
            patient_id=reference[len("Patient/"):],
            clinical_status=_first_code(resource.get("clinicalStatus")),
            verification_status=_first_code(resource.get("verificationStatus")),
            onset_date=resource.get("onsetDateTime"),
            notes="\n".join(notes) or None,
        )
    except ValidationError as exc:
        raise ValidationException(f"Condition inválida: {exc.errors()[0]['msg']}")

    return await create_dual_coded_condition(db, request)


async def process_bundle(db: AsyncSession, bundle: dict) -> dict:
    """
    Procesa un Bundle: las Conditions con una única codificación NAMASTE se
    codifican en dual y se guardan; el resto de entradas pasa sin cambios.
    """
    if not isinstance(bundle, dict) or bundle.get("resourceType") != "Bundle":
        raise ValidationException("Se esperaba un recurso Bundle")

    resources = []
    processed = 0
    for entry in bundle.get("entry") or []:
        resource = entry.get("resource")
        if resource is None:
            continue
        codings = (resource.get("code") or {}).get("coding") or []
        if (
            resource.get("resourceType") == "Condition"
            and len(codings) == 1
            and _namaste_coding(resource) is not None
        ):
            record = await create_condition_from_resource(db, resource)
            resources.append(fhir_service.condition_resource(record))
            processed += 1
        else:
            resources.append(resource)

    logger.info(f"Bundle procesado: {processed} Condition(s) con codificación dual")
    bundle_id = f"processed-{bundle['id']}" if bundle.get("id") else None
    return fhir_service.bundle("collection", resources, bundle_id)


# ── Consultas ────────────────────────────────────────


async def patient_problem_list(db: AsyncSession, patient_id: str) -> dict:
    """Bundle searchset con las Conditions guardadas del paciente."""
    result = await db.execute(
        select(ConditionRecord)
        .where(ConditionRecord.patient_id == patient_id)
        .order_by(ConditionRecord.recorded_at, ConditionRecord.id)
    )
    records = result.scalars().all()
    return fhir_service.bundle(
        "searchset", [fhir_service.condition_resource(r) for r in records]
    )


async def dual_coding_autocomplete(db: AsyncSession, term: str, limit: int = 10) -> dict:
    namaste = await search_service.autocomplete_namaste(db, term, limit)
    icd11 = await search_service.autocomplete_icd11(db, term, limit)
    return fhir_service.autocomplete_expansion(namaste, icd11)


async def coding_suggestions(db: AsyncSession, term: str, limit: int = 10) -> dict:
    """Sugerencias NAMASTE con sus traducciones TM2 / Biomedicina."""
    suggestions = []
    for item in await search_service.autocomplete_namaste(db, term, limit):
        tm2 = await translation_service.namaste_to_tm2(db, item.code)
        biomedicine = await translation_service.namaste_to_biomedicine(db, item.code)
        suggestions.append(
            {
                "namaste": fhir_service.coding(settings.NAMASTE_SYSTEM, item.code, item.display),
                "system": item.system.value,
                "icd11_tm2": [
                    {
                        **fhir_service.coding(c.target_system, c.target_code, c.target_display),
                        "equivalence": c.equivalence.fhir_code,
                        "confidence": c.confidence_score,
                    }
                    for c in tm2
                ],
                "icd11_biomedicine": [
                    {
                        **fhir_service.coding(c.target_system, c.target_code, c.target_display),
                        "equivalence": c.equivalence.fhir_code,
                        "confidence": c.confidence_score,
                    }
                    for c in biomedicine
                ],
            }
        )
    return {"term": (term or "").strip(), "total": len(suggestions), "suggestions": suggestions}


async def validate_dual_coding(
    db: AsyncSession,
    namaste_code: str,
    icd11_code: str,
    code_type: Icd11CodeType = Icd11CodeType.TM2,
) -> ValidateCodingResponse:
    """
    Verifica que ambos códigos existan y que haya un mapeo utilizable entre
    ellos (en cualquier dirección).
    """
    errors = []
    namaste = await registry.find_namaste(db, namaste_code)
    if namaste is None:
        errors.append(f"Código NAMASTE '{namaste_code}' no encontrado")
    icd11 = await registry.find_icd11(db, icd11_code, code_type)
    if icd11 is None:
        errors.append(f"Código CIE-11 {code_type.value} '{icd11_code}' no encontrado")
    if errors:
        return ValidateCodingResponse(valid=False, errors=errors)

    target_system = registry.uri_for_code_type(code_type)
    for edge in await mapping_service.mappings_for_code(db, settings.NAMASTE_SYSTEM, namaste.code):
        other = (
            (edge.target_system, edge.target_code)
            if edge.source_system == settings.NAMASTE_SYSTEM and edge.source_code == namaste.code
            else (edge.source_system, edge.source_code)
        )
        if other == (target_system, icd11.code) and edge.equivalence.is_usable:
            return ValidateCodingResponse(
                valid=True,
                errors=[],
                mapping_id=str(edge.id),
                equivalence=edge.equivalence.fhir_code,
            )

    return ValidateCodingResponse(
        valid=False,
        errors=[f"No existe un mapeo entre {namaste.code} y {icd11.code}"],
    )
