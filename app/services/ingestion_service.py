"""
Ingesta del vocabulario NAMASTE desde CSV y generación automática de mapeos.

Columnas del CSV:
    code,display,definition,system,category,subcategory,
    who_terminology_code,icd11_tm2_code,icd11_biomedicine_code

Las dos últimas son sugerencias de mapeo: no se guardan en el registro,
alimentan `generate_automatic_mappings`.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import DependencyException, ValidationException
from app.models.admin_job import AdminJob
from app.models.concept_mapping import MappingEquivalence
from app.models.icd11 import Icd11CodeType
from app.models.namaste import TraditionalSystem
from app.schemas.mapping import CreateMappingRequest
from app.schemas.namaste import NamasteCodeUpsert
from app.services import admin_job_service, audit_service
from app.services import code_registry_service as registry
from app.services import mapping_service

settings = get_settings()
logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "code",
    "display",
    "definition",
    "system",
    "category",
    "subcategory",
    "who_terminology_code",
    "icd11_tm2_code",
    "icd11_biomedicine_code",
]
MIN_COLUMNS = 4
CHECKPOINT_EVERY = 50


@dataclass
class NamasteCsvRow:
    line: int
    entry: NamasteCodeUpsert
    icd11_tm2_code: str | None = None
    icd11_biomedicine_code: str | None = None


def _parse_system(value: str) -> TraditionalSystem | None:
    value = (value or "").strip().upper()
    if not value:
        return TraditionalSystem.AYURVEDA
    try:
        return TraditionalSystem(value)
    except ValueError:
        return None


def _cell(row: list[str], index: int) -> str:
    return row[index].strip() if index < len(row) else ""


def parse_namaste_csv(path: str | Path) -> list[NamasteCsvRow]:
    """
    Lee el CSV NAMASTE. Las filas con menos de cuatro columnas o datos
    inválidos se omiten con un warning. Un archivo inexistente o ilegible
    lanza DependencyException.
    """
    csv_path = Path(path)
    try:
        with open(csv_path, "r", encoding="utf-8", newline="") as f:
            raw_rows = list(csv.reader(f))
    except OSError as exc:
        raise DependencyException(f"No se pudo leer el CSV NAMASTE {csv_path}: {exc}")

    rows: list[NamasteCsvRow] = []
    for line, raw in enumerate(raw_rows, start=1):
        if line == 1 and raw and raw[0].strip().lower() == "code":
            continue
        if len([c for c in raw if c.strip()]) == 0:
            continue
        if len(raw) < MIN_COLUMNS:
            logger.warning(f"CSV NAMASTE línea {line}: menos de {MIN_COLUMNS} columnas, omitida")
            continue

        system = _parse_system(_cell(raw, 3))
        if system is None:
            logger.warning(f"CSV NAMASTE línea {line}: sistema '{_cell(raw, 3)}' desconocido, omitida")
            continue

        try:
            registry.validate_code(_cell(raw, 0))
            entry = NamasteCodeUpsert(
                code=_cell(raw, 0),
                display=_cell(raw, 1),
                definition=_cell(raw, 2) or None,
                system=system,
                category=_cell(raw, 4) or None,
                subcategory=_cell(raw, 5) or None,
                who_terminology_code=_cell(raw, 6) or None,
                version=settings.NAMASTE_VERSION,
            )
        except (ValidationException, ValidationError) as exc:
            detail = exc.detail if isinstance(exc, ValidationException) else exc.errors()[0]["msg"]
            logger.warning(f"CSV NAMASTE línea {line}: {detail}, omitida")
            continue

        rows.append(
            NamasteCsvRow(
                line=line,
                entry=entry,
                icd11_tm2_code=_cell(raw, 7) or None,
                icd11_biomedicine_code=_cell(raw, 8) or None,
            )
        )

    logger.info(f"CSV NAMASTE {csv_path}: {len(rows)} filas válidas de {len(raw_rows)}")
    return rows


# ── Jobs ─────────────────────────────────────────────


async def reload_namaste(db: AsyncSession, job: AdminJob, path: str | Path | None = None) -> dict:
    """Carga (upsert) todos los códigos del CSV a través del registro."""
    csv_path = path or settings.NAMASTE_CSV_PATH
    rows = parse_namaste_csv(csv_path)

    counts = {"processed": 0, "upserted": 0, "skipped": 0}
    for row in rows:
        counts["processed"] += 1
        try:
            await registry.upsert_namaste(db, row.entry)
            counts["upserted"] += 1
        except ValidationException as exc:
            counts["skipped"] += 1
            logger.warning(f"CSV NAMASTE línea {row.line}: {exc.detail}, omitida")
        if counts["processed"] % CHECKPOINT_EVERY == 0:
            await admin_job_service.checkpoint(db, job, counts)

    await audit_service.log_action(
        db,
        entity="namaste_code",
        entity_id=str(csv_path),
        action="data_load",
        new_data=counts,
    )
    await db.commit()
    logger.info(f"Carga NAMASTE completada: {counts}")
    return counts


async def generate_automatic_mappings(
    db: AsyncSession,
    job: AdminJob,
    path: str | Path | None = None,
) -> dict:
    """
    Crea mapeos automáticos a partir de las sugerencias del CSV:
    TM2 → EQUIVALENT, Biomedicina → RELATEDTO. Se omite si ya existe algún
    mapeo desde el código hacia ese sistema (manual o automático).
    """
    rows = parse_namaste_csv(path or settings.NAMASTE_CSV_PATH)
    hints = (
        (Icd11CodeType.TM2, "icd11_tm2_code", MappingEquivalence.EQUIVALENT),
        (Icd11CodeType.BIOMEDICINE, "icd11_biomedicine_code", MappingEquivalence.RELATEDTO),
    )

    counts = {"processed": 0, "created": 0, "existing": 0, "missing_codes": 0}
    for row in rows:
        counts["processed"] += 1
        code = row.entry.code
        for code_type, attribute, equivalence in hints:
            target_code = getattr(row, attribute)
            if not target_code:
                continue
            target_system = registry.uri_for_code_type(code_type)

            if await mapping_service.has_mapping_to_system(
                db, settings.NAMASTE_SYSTEM, code, target_system
            ):
                counts["existing"] += 1
                continue
            if (
                await registry.find_namaste(db, code) is None
                or await registry.find_icd11(db, target_code, code_type) is None
            ):
                counts["missing_codes"] += 1
                continue

            await mapping_service.add_or_update_mapping(
                db,
                CreateMappingRequest(
                    source_system=settings.NAMASTE_SYSTEM,
                    source_code=code,
                    target_system=target_system,
                    target_code=target_code,
                    equivalence=equivalence,
                    comment="Generado automáticamente desde el CSV NAMASTE",
                ),
                automatic=True,
            )
            counts["created"] += 1

        if counts["processed"] % CHECKPOINT_EVERY == 0:
            await admin_job_service.checkpoint(db, job, counts)

    logger.info(f"Generación automática de mapeos completada: {counts}")
    return counts
