"""
Construcción de recursos FHIR R4 (como dicts) a partir del registro y del
grafo de mapeos: CapabilityStatement, CodeSystem, ConceptMap, ValueSet,
Parameters ($translate, $lookup, $validate-code), OperationOutcome y Condition.

La serialización JSON/XML vive en app.core.fhir_format.
"""

import logging
import re
from collections import OrderedDict
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import NotFoundException, ValidationException
from app.models.concept_mapping import MappingEquivalence
from app.models.condition import ConditionRecord
from app.models.icd11 import Icd11Code
from app.models.namaste import NamasteCode, TraditionalSystem
from app.services import code_registry_service as registry
from app.services import mapping_service, translation_service

settings = get_settings()
logger = logging.getLogger(__name__)

FHIR_VERSION = "4.0.1"
CODE_SYSTEM_ID = "namaste-codes"
CONCEPT_MAP_ID = "namaste-to-icd11"
VALUE_SET_ID = "namaste"
PUBLISHER = "Ministry of AYUSH, Government of India"

CONFIDENCE_EXTENSION = "StructureDefinition/mapping-confidence"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _as_utc(value).isoformat()


def _compact(data: dict) -> dict:
    """Quita claves con None o listas vacías, respetando el orden."""
    return {k: v for k, v in data.items() if v is not None and v != []}


def _url(path: str) -> str:
    return f"{settings.FHIR_BASE_URL.rstrip('/')}/{path}"


def system_name(system_uri: str) -> str:
    if system_uri == settings.NAMASTE_SYSTEM:
        return "NAMASTE"
    if system_uri == settings.ICD11_TM2_SYSTEM:
        return "ICD-11 TM2"
    if system_uri == settings.ICD11_BIOMEDICINE_SYSTEM:
        return "ICD-11 Biomedicine"
    return system_uri


def coding(system: str, code: str, display: str | None = None) -> dict:
    return _compact({"system": system, "code": code, "display": display})


# ── CapabilityStatement ──────────────────────────────


def capability_statement() -> dict:
    """Resumen de recursos y operaciones del servidor (/fhir/metadata)."""
    return {
        "resourceType": "CapabilityStatement",
        "id": "terminology-server",
        "url": _url("metadata"),
        "version": settings.NAMASTE_VERSION,
        "name": "NamasteIcd11TerminologyServer",
        "title": settings.APP_NAME,
        "status": "active",
        "date": _iso(datetime.now(timezone.utc)),
        "publisher": PUBLISHER,
        "kind": "instance",
        "software": {"name": settings.APP_NAME, "version": settings.NAMASTE_VERSION},
        "implementation": {
            "description": "Servidor de terminología NAMASTE ↔ ICD-11",
            "url": settings.FHIR_BASE_URL,
        },
        "fhirVersion": FHIR_VERSION,
        "format": ["json", "xml"],
        "rest": [
            {
                "mode": "server",
                "resource": [
                    {
                        "type": "CodeSystem",
                        "interaction": [{"code": "read"}],
                        "operation": [
                            {"name": "lookup", "definition": "http://hl7.org/fhir/OperationDefinition/CodeSystem-lookup"},
                            {"name": "validate-code", "definition": "http://hl7.org/fhir/OperationDefinition/CodeSystem-validate-code"},
                        ],
                    },
                    {
                        "type": "ConceptMap",
                        "interaction": [{"code": "read"}],
                        "operation": [
                            {"name": "translate", "definition": "http://hl7.org/fhir/OperationDefinition/ConceptMap-translate"},
                        ],
                    },
                    {
                        "type": "ValueSet",
                        "interaction": [{"code": "read"}],
                        "operation": [
                            {"name": "expand", "definition": "http://hl7.org/fhir/OperationDefinition/ValueSet-expand"},
                        ],
                    },
                    {
                        "type": "Condition",
                        "interaction": [{"code": "create"}, {"code": "search-type"}],
                    },
                    {
                        "type": "Bundle",
                        "interaction": [{"code": "create"}],
                    },
                ],
            }
        ],
    }


# ── CodeSystem ───────────────────────────────────────


def _concept_properties(row: NamasteCode, shortcut: dict) -> list[dict]:
    properties = [{"code": "system", "valueCode": row.system.value}]
    if row.category:
        properties.append({"code": "category", "valueString": row.category})
    if row.subcategory:
        properties.append({"code": "subcategory", "valueString": row.subcategory})
    if row.who_terminology_code:
        properties.append({"code": "who-terminology", "valueCode": row.who_terminology_code})
    if shortcut.get("icd11_tm2_code"):
        properties.append({"code": "icd11-tm2", "valueCode": shortcut["icd11_tm2_code"]})
    if shortcut.get("icd11_biomedicine_code"):
        properties.append(
            {"code": "icd11-biomedicine", "valueCode": shortcut["icd11_biomedicine_code"]}
        )
    return properties


async def namaste_code_system(db: AsyncSession) -> dict:
    """CodeSystem con un concepto por código NAMASTE."""
    rows = await registry.list_by_system(db)
    responses = await registry.namaste_responses(db, rows)

    concepts = []
    for row, response in zip(rows, responses):
        concepts.append(
            _compact(
                {
                    "code": row.code,
                    "display": row.display,
                    "definition": row.definition,
                    "property": _concept_properties(row, response.model_dump()),
                }
            )
        )

    last_update = max((_as_utc(r.updated_at) for r in rows), default=None)
    return _compact(
        {
            "resourceType": "CodeSystem",
            "id": CODE_SYSTEM_ID,
            "url": settings.NAMASTE_SYSTEM,
            "version": settings.NAMASTE_VERSION,
            "name": "NAMASTE",
            "title": "National AYUSH Morbidity & Standardized Terminologies Electronic",
            "status": "active",
            "date": _iso(last_update),
            "publisher": PUBLISHER,
            "description": "Códigos de diagnóstico de Ayurveda, Siddha y Unani",
            "caseSensitive": True,
            "content": "complete",
            "count": len(concepts),
            "property": [
                {"code": "system", "type": "code", "description": "Sistema de medicina tradicional"},
                {"code": "category", "type": "string", "description": "Categoría"},
                {"code": "subcategory", "type": "string", "description": "Subcategoría"},
                {"code": "who-terminology", "type": "code", "description": "Terminología estándar OMS"},
                {"code": "icd11-tm2", "type": "code", "description": "Mejor mapeo CIE-11 TM2"},
                {"code": "icd11-biomedicine", "type": "code", "description": "Mejor mapeo CIE-11 Biomedicina"},
            ],
            "concept": concepts,
        }
    )


# ── ConceptMap ───────────────────────────────────────


def _confidence_extension(score: float) -> dict:
    return {"url": _url(CONFIDENCE_EXTENSION), "valueDecimal": round(score, 4)}


async def namaste_to_icd11_concept_map(db: AsyncSession) -> dict:
    """
    ConceptMap con un grupo por par (source_system, target_system).
    DISJOINT se publica (afirmación negativa); UNMATCHED no.
    """
    mappings = [
        m for m in await mapping_service.list_mappings(db)
        if m.equivalence != MappingEquivalence.UNMATCHED
    ]
    displays = await registry.displays_for(
        db,
        {(m.source_system, m.source_code) for m in mappings}
        | {(m.target_system, m.target_code) for m in mappings},
    )

    groups: "OrderedDict[tuple[str, str], OrderedDict[str, list[dict]]]" = OrderedDict()
    for mapping in mappings:
        elements = groups.setdefault((mapping.source_system, mapping.target_system), OrderedDict())
        targets = elements.setdefault(mapping.source_code, [])
        targets.append(
            _compact(
                {
                    "extension": [_confidence_extension(mapping.confidence_score)],
                    "code": mapping.target_code,
                    "display": displays.get((mapping.target_system, mapping.target_code)),
                    "equivalence": mapping.equivalence.fhir_code,
                    "comment": mapping.comment,
                }
            )
        )

    group_list = []
    for (source_system, target_system), elements in groups.items():
        group_list.append(
            {
                "source": source_system,
                "target": target_system,
                "element": [
                    _compact(
                        {
                            "code": code,
                            "display": displays.get((source_system, code)),
                            "target": targets,
                        }
                    )
                    for code, targets in elements.items()
                ],
            }
        )

    last_update = max((_as_utc(m.updated_at) for m in mappings), default=None)
    return _compact(
        {
            "resourceType": "ConceptMap",
            "id": CONCEPT_MAP_ID,
            "url": _url(f"ConceptMap/{CONCEPT_MAP_ID}"),
            "version": settings.MAPPING_VERSION,
            "name": "NamasteToIcd11",
            "title": "NAMASTE ↔ ICD-11 (TM2 / Biomedicina)",
            "status": "active",
            "date": _iso(last_update),
            "publisher": PUBLISHER,
            "description": "Mapeos entre NAMASTE y la CIE-11 (Módulo 2 de Medicina Tradicional y Biomedicina)",
            "sourceUri": settings.NAMASTE_SYSTEM,
            "targetUri": settings.ICD11_BIOMEDICINE_SYSTEM,
            "group": group_list,
        }
    )


# ── ValueSet ─────────────────────────────────────────


def _compose(filter_text: str | None, system: TraditionalSystem | None) -> dict:
    filters = []
    if filter_text:
        filters.append({"property": "display", "op": "regex", "value": f".*{re.escape(filter_text)}.*"})
    if system is not None:
        filters.append({"property": "system", "op": "=", "value": system.value})
    include = _compact({"system": settings.NAMASTE_SYSTEM, "filter": filters})
    return {"include": [include]}


def _value_set_header() -> dict:
    return {
        "resourceType": "ValueSet",
        "id": VALUE_SET_ID,
        "url": _url(f"ValueSet/{VALUE_SET_ID}"),
        "version": settings.NAMASTE_VERSION,
        "name": "NamasteValueSet",
        "title": "Códigos NAMASTE",
        "status": "active",
        "publisher": PUBLISHER,
    }


def namaste_value_set(filter_text: str | None = None, system: TraditionalSystem | None = None) -> dict:
    """ValueSet definicional: sin filtros incluye todo NAMASTE."""
    value_set = _value_set_header()
    value_set["compose"] = _compose(filter_text, system)
    return value_set


def _matches(row: NamasteCode, filter_text: str | None) -> bool:
    if not filter_text:
        return True
    needle = filter_text.lower()
    return needle in row.display.lower()


async def expand_value_set(
    db: AsyncSession,
    filter_text: str | None = None,
    system: TraditionalSystem | None = None,
    offset: int = 0,
    count: int = 100,
) -> dict:
    """$expand del ValueSet NAMASTE con paginación offset/count."""
    offset = max(offset, 0)
    count = max(0, min(count, settings.SEARCH_MAX_PAGE_SIZE))
    rows = [r for r in await registry.list_by_system(db, system) if _matches(r, filter_text)]

    value_set = namaste_value_set(filter_text, system)
    value_set["expansion"] = {
        "identifier": _url(f"ValueSet/{VALUE_SET_ID}/$expand"),
        "timestamp": _iso(datetime.now(timezone.utc)),
        "total": len(rows),
        "offset": offset,
        "contains": [
            coding(settings.NAMASTE_SYSTEM, r.code, r.display)
            for r in rows[offset:offset + count]
        ],
    }
    return value_set


def autocomplete_expansion(namaste: list, icd11: list) -> dict:
    """ValueSet con expansión combinada NAMASTE + CIE-11 (autocompletado dual)."""
    contains = [coding(settings.NAMASTE_SYSTEM, c.code, c.display) for c in namaste]
    contains += [
        coding(registry.uri_for_code_type(c.code_type), c.code, c.title) for c in icd11
    ]
    return {
        "resourceType": "ValueSet",
        "id": "dual-coding-autocomplete",
        "status": "active",
        "expansion": {
            "timestamp": _iso(datetime.now(timezone.utc)),
            "total": len(contains),
            "contains": contains,
        },
    }


# ── Operaciones ──────────────────────────────────────


def _default_target(source_uri: str) -> str:
    if source_uri == settings.NAMASTE_SYSTEM:
        return settings.ICD11_TM2_SYSTEM
    return settings.NAMASTE_SYSTEM


async def translate_operation(
    db: AsyncSession,
    code: str | None,
    system: str | None,
    targetsystem: str | None = None,
) -> dict:
    """ConceptMap/$translate → Parameters (result, message?, match*)."""
    if not code or not system:
        raise ValidationException("Los parámetros 'code' y 'system' son obligatorios")

    source_uri = registry.normalize_system_uri(system)
    target_uri = (
        registry.normalize_system_uri(targetsystem) if targetsystem else _default_target(source_uri)
    )
    candidates = await translation_service.translate(db, source_uri, code, target_uri)

    parameters = [{"name": "result", "valueBoolean": bool(candidates)}]
    if not candidates:
        parameters.append(
            {
                "name": "message",
                "valueString": f"No se encontraron mapeos para {code} hacia {system_name(target_uri)}",
            }
        )
    for candidate in candidates:
        parts = [
            {"name": "equivalence", "valueCode": candidate.equivalence.fhir_code},
            {
                "name": "concept",
                "valueCoding": coding(
                    candidate.target_system, candidate.target_code, candidate.target_display
                ),
            },
            {"name": "source", "valueUri": _url(f"ConceptMap/{CONCEPT_MAP_ID}")},
        ]
        parameters.append({"name": "match", "part": parts})

    return {"resourceType": "Parameters", "parameter": parameters}


def _lookup_properties(entry: NamasteCode | Icd11Code) -> list[dict]:
    if isinstance(entry, NamasteCode):
        values = [
            ("system", "valueCode", entry.system.value),
            ("category", "valueString", entry.category),
            ("subcategory", "valueString", entry.subcategory),
            ("who-terminology", "valueCode", entry.who_terminology_code),
        ]
    else:
        values = [
            ("code-type", "valueCode", entry.code_type.value),
            ("parent", "valueCode", entry.parent_code),
            ("chapter", "valueString", entry.chapter),
        ]
    return [
        {"name": "property", "part": [{"name": "code", "valueCode": name}, {"name": "value", key: value}]}
        for name, key, value in values
        if value
    ]


async def lookup_operation(db: AsyncSession, system: str | None, code: str | None) -> dict:
    """CodeSystem/$lookup → Parameters (name, version, display, definition, property*)."""
    if not code or not system:
        raise ValidationException("Los parámetros 'system' y 'code' son obligatorios")

    system_uri = registry.normalize_system_uri(system)
    entry = await registry.find_by_system_uri(db, system_uri, code)
    if entry is None:
        raise NotFoundException(detail=f"Código '{code}' no encontrado en {system_uri}")

    version = settings.NAMASTE_VERSION if isinstance(entry, NamasteCode) else settings.ICD11_RELEASE
    parameters = [
        {"name": "name", "valueString": system_name(system_uri)},
        {"name": "version", "valueString": version},
        {"name": "display", "valueString": registry.display_of(entry)},
    ]
    if entry.definition:
        parameters.append({"name": "definition", "valueString": entry.definition})
    if isinstance(entry, Icd11Code):
        for language, value in sorted((entry.synonyms or {}).items()):
            parameters.append(
                {
                    "name": "designation",
                    "part": [
                        {"name": "language", "valueCode": language},
                        {"name": "value", "valueString": value},
                    ],
                }
            )
    parameters.extend(_lookup_properties(entry))
    return {"resourceType": "Parameters", "parameter": parameters}


async def validate_code_operation(
    db: AsyncSession,
    url: str | None,
    code: str | None,
    display: str | None = None,
) -> dict:
    """
    CodeSystem/$validate-code. Un código (o sistema) desconocido no es un
    error: result=false con mensaje.
    """
    if not url or not code:
        raise ValidationException("Los parámetros 'url' y 'code' son obligatorios")

    try:
        system_uri = registry.normalize_system_uri(url)
    except ValidationException:
        return _validation_result(False, f"Sistema de codificación desconocido: {url}")

    entry = await registry.find_by_system_uri(db, system_uri, code)
    if entry is None:
        return _validation_result(False, f"El código '{code}' no existe en {system_name(system_uri)}")

    actual = registry.display_of(entry)
    if display and display.strip().lower() != actual.lower():
        return _validation_result(
            False,
            f"El display '{display}' no coincide con '{actual}'",
            actual,
        )
    return _validation_result(True, None, actual)


def _validation_result(valid: bool, message: str | None, display: str | None = None) -> dict:
    parameters = [{"name": "result", "valueBoolean": valid}]
    if message:
        parameters.append({"name": "message", "valueString": message})
    if display:
        parameters.append({"name": "display", "valueString": display})
    return {"resourceType": "Parameters", "parameter": parameters}


# ── OperationOutcome ─────────────────────────────────


_ISSUE_CODES = {
    400: "invalid",
    404: "not-found",
    405: "not-supported",
    409: "conflict",
    422: "invalid",
    502: "transient",
}


def issue_code_for_status(status_code: int) -> str:
    return _ISSUE_CODES.get(status_code, "exception")


def operation_outcome(severity: str, code: str, diagnostics: str) -> dict:
    return {
        "resourceType": "OperationOutcome",
        "issue": [{"severity": severity, "code": code, "diagnostics": diagnostics}],
    }


# ── Condition / Bundle ───────────────────────────────


def condition_resource(record: ConditionRecord) -> dict:
    """Condition FHIR con la foto de codificaciones guardada (NAMASTE primero)."""
    namaste_display = next(
        (c.get("display") for c in record.codings if c.get("system") == settings.NAMASTE_SYSTEM),
        None,
    )
    return _compact(
        {
            "resourceType": "Condition",
            "id": str(record.id),
            "meta": {"profile": ["http://hl7.org/fhir/StructureDefinition/Condition"]},
            "clinicalStatus": {
                "coding": [
                    {
                        "system": "http://terminology.hl7.org/CodeSystem/condition-clinical",
                        "code": record.clinical_status,
                    }
                ]
            },
            "verificationStatus": {
                "coding": [
                    {
                        "system": "http://terminology.hl7.org/CodeSystem/condition-ver-status",
                        "code": record.verification_status,
                    }
                ]
            },
            "category": [
                {
                    "coding": [
                        {
                            "system": "http://terminology.hl7.org/CodeSystem/condition-category",
                            "code": "problem-list-item",
                            "display": "Problem List Item",
                        }
                    ]
                }
            ],
            "code": _compact({"coding": list(record.codings), "text": namaste_display}),
            "subject": {"reference": f"Patient/{record.patient_id}"},
            "onsetDateTime": _iso(record.onset),
            "recordedDate": _iso(record.recorded_at),
            "note": [{"text": record.note}] if record.note else None,
        }
    )


def bundle(bundle_type: str, resources: list[dict], bundle_id: str | None = None) -> dict:
    return _compact(
        {
            "resourceType": "Bundle",
            "id": bundle_id,
            "type": bundle_type,
            "timestamp": _iso(datetime.now(timezone.utc)),
            "total": len(resources) if bundle_type == "searchset" else None,
            "entry": [
                _compact(
                    {
                        "fullUrl": _url(f"{r['resourceType']}/{r['id']}") if r.get("id") else None,
                        "resource": r,
                    }
                )
                for r in resources
            ],
        }
    )
