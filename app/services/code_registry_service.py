"""
Registro de códigos: NAMASTE y CIE-11 (TM2 / Biomedicina).

Fuente de verdad del vocabulario. La ingesta (CSV) y la sincronización con la
OMS escriben aquí solo a través de `upsert_namaste` / `upsert_icd11`.
"""

import logging
import re
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import NotFoundException, ValidationException
from app.models.concept_mapping import ConceptMapping
from app.models.icd11 import Icd11Code, Icd11CodeType
from app.models.mapping_shortcut import NamasteMappingShortcut
from app.models.namaste import NamasteCode, TraditionalSystem
from app.schemas.icd11 import Icd11CodeUpsert
from app.schemas.mapping import TerminologyStats
from app.schemas.namaste import NamasteCodeResponse, NamasteCodeUpsert

settings = get_settings()
logger = logging.getLogger(__name__)

_code_re = re.compile(settings.CODE_PATTERN)


# ── Sistemas (URIs) ──────────────────────────────────


def system_aliases() -> dict[str, str]:
    return {
        "NAMASTE": settings.NAMASTE_SYSTEM,
        "TM2": settings.ICD11_TM2_SYSTEM,
        "BIOMEDICINE": settings.ICD11_BIOMEDICINE_SYSTEM,
    }


def normalize_system_uri(system: str) -> str:
    """Acepta una URI conocida o un alias (NAMASTE, TM2, BIOMEDICINE)."""
    value = (system or "").strip()
    aliases = system_aliases()
    if value.upper() in aliases:
        return aliases[value.upper()]
    if value in aliases.values():
        return value
    raise ValidationException(f"Sistema de codificación desconocido: '{system}'")


def code_type_for_uri(system_uri: str) -> Icd11CodeType | None:
    """Partición CIE-11 de una URI; None si la URI es NAMASTE."""
    if system_uri == settings.ICD11_TM2_SYSTEM:
        return Icd11CodeType.TM2
    if system_uri == settings.ICD11_BIOMEDICINE_SYSTEM:
        return Icd11CodeType.BIOMEDICINE
    return None


def uri_for_code_type(code_type: Icd11CodeType) -> str:
    if code_type == Icd11CodeType.TM2:
        return settings.ICD11_TM2_SYSTEM
    return settings.ICD11_BIOMEDICINE_SYSTEM


def validate_code(code: str) -> str:
    value = (code or "").strip()
    if not value:
        raise ValidationException("El código es obligatorio")
    if len(value) > settings.CODE_MAX_LENGTH or not _code_re.match(value):
        raise ValidationException(f"Código con formato inválido: '{code}'")
    return value


# ── Upsert ───────────────────────────────────────────


async def upsert_namaste(db: AsyncSession, data: NamasteCodeUpsert) -> NamasteCode:
    """
    Inserta o actualiza un código NAMASTE por (system, code).
    Hace flush pero no commit: la ingesta confirma por lotes.
    """
    code = validate_code(data.code)
    display = data.display.strip()
    if not display:
        raise ValidationException(f"El código NAMASTE '{code}' no tiene término (display)")

    result = await db.execute(
        select(NamasteCode).where(
            NamasteCode.system == data.system,
            NamasteCode.code == code,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = NamasteCode(code=code, system=data.system, display=display)
        db.add(entry)

    entry.display = display
    entry.definition = data.definition or None
    entry.category = data.category or None
    entry.subcategory = data.subcategory or None
    entry.who_terminology_code = data.who_terminology_code or None
    entry.version = data.version
    await db.flush()

    from app.services.mapping_service import refresh_shortcuts_for_code

    await refresh_shortcuts_for_code(db, settings.NAMASTE_SYSTEM, code)
    return entry


async def upsert_icd11(db: AsyncSession, data: Icd11CodeUpsert) -> Icd11Code:
    """
    Inserta o actualiza un código CIE-11 por (code_type, code).
    El padre debe existir en el mismo code_type y no puede formar un ciclo.
    """
    code = validate_code(data.code)
    title = data.title.strip()
    if not title:
        raise ValidationException(f"El código CIE-11 '{code}' no tiene título")

    parent_code = (data.parent_code or "").strip() or None
    if parent_code is not None:
        await _check_parent(db, code, parent_code, data.code_type)

    result = await db.execute(
        select(Icd11Code).where(
            Icd11Code.code_type == data.code_type,
            Icd11Code.code == code,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = Icd11Code(code=code, code_type=data.code_type, title=title)
        db.add(entry)

    entry.title = title
    entry.definition = data.definition or None
    entry.parent_code = parent_code
    entry.chapter = data.chapter or None
    entry.synonyms = dict(data.synonyms or {})
    entry.foundation_uri = data.foundation_uri or None
    entry.linearization_uri = data.linearization_uri or None
    await db.flush()

    from app.services.mapping_service import refresh_shortcuts_for_code

    await refresh_shortcuts_for_code(db, uri_for_code_type(data.code_type), code)
    return entry


async def _check_parent(
    db: AsyncSession,
    code: str,
    parent_code: str,
    code_type: Icd11CodeType,
) -> None:
    if parent_code == code:
        raise ValidationException(f"El código '{code}' no puede ser su propio padre")

    visited: set[str] = set()
    current: str | None = parent_code
    while current is not None:
        if current == code or current in visited:
            raise ValidationException(
                f"El padre '{parent_code}' crea un ciclo en la jerarquía de '{code}'"
            )
        visited.add(current)
        result = await db.execute(
            select(Icd11Code.parent_code).where(
                Icd11Code.code_type == code_type,
                Icd11Code.code == current,
            )
        )
        row = result.first()
        if row is None:
            if current == parent_code:
                raise ValidationException(
                    f"El padre '{parent_code}' no existe en {code_type.value}"
                )
            break
        current = row[0]


# ── Consultas ────────────────────────────────────────


async def find_namaste(
    db: AsyncSession,
    code: str,
    system: TraditionalSystem | None = None,
) -> NamasteCode | None:
    stmt = select(NamasteCode).where(NamasteCode.code == code)
    if system is not None:
        stmt = stmt.where(NamasteCode.system == system)
    stmt = stmt.order_by(NamasteCode.updated_at.desc(), NamasteCode.system).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_namaste(
    db: AsyncSession,
    code: str,
    system: TraditionalSystem | None = None,
) -> NamasteCode:
    entry = await find_namaste(db, code, system)
    if entry is None:
        raise NotFoundException(detail=f"Código NAMASTE '{code}' no encontrado")
    return entry


async def find_icd11(
    db: AsyncSession,
    code: str,
    code_type: Icd11CodeType | None = None,
) -> Icd11Code | None:
    stmt = select(Icd11Code).where(Icd11Code.code == code)
    if code_type is not None:
        stmt = stmt.where(Icd11Code.code_type == code_type)
    stmt = stmt.order_by(Icd11Code.updated_at.desc(), Icd11Code.code_type).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_icd11(
    db: AsyncSession,
    code: str,
    code_type: Icd11CodeType | None = None,
) -> Icd11Code:
    entry = await find_icd11(db, code, code_type)
    if entry is None:
        raise NotFoundException(detail=f"Código CIE-11 '{code}' no encontrado")
    return entry


async def find_by_system_uri(
    db: AsyncSession,
    system_uri: str,
    code: str,
) -> NamasteCode | Icd11Code | None:
    """Resuelve (URI, código) contra el registro correspondiente."""
    if system_uri == settings.NAMASTE_SYSTEM:
        return await find_namaste(db, code)
    code_type = code_type_for_uri(system_uri)
    if code_type is None:
        return None
    return await find_icd11(db, code, code_type)


def display_of(entry: NamasteCode | Icd11Code) -> str:
    return entry.display if isinstance(entry, NamasteCode) else entry.title


async def displays_for(
    db: AsyncSession,
    pairs: set[tuple[str, str]],
) -> dict[tuple[str, str], str]:
    """Displays de varios (URI, código) con una consulta por partición."""
    displays: dict[tuple[str, str], str] = {}

    namaste_codes = {code for uri, code in pairs if uri == settings.NAMASTE_SYSTEM}
    if namaste_codes:
        result = await db.execute(
            select(NamasteCode.code, NamasteCode.display)
            .where(NamasteCode.code.in_(namaste_codes))
            .order_by(NamasteCode.updated_at)
        )
        for code, display in result.all():
            displays[(settings.NAMASTE_SYSTEM, code)] = display

    for code_type in Icd11CodeType:
        uri = uri_for_code_type(code_type)
        codes = {code for pair_uri, code in pairs if pair_uri == uri}
        if not codes:
            continue
        result = await db.execute(
            select(Icd11Code.code, Icd11Code.title).where(
                Icd11Code.code_type == code_type,
                Icd11Code.code.in_(codes),
            )
        )
        for code, title in result.all():
            displays[(uri, code)] = title

    return displays


async def list_by_system(
    db: AsyncSession,
    system: TraditionalSystem | None = None,
) -> list[NamasteCode]:
    """Lista códigos NAMASTE de un sistema (o todos si system es None)."""
    stmt = select(NamasteCode)
    if system is not None:
        stmt = stmt.where(NamasteCode.system == system)
    result = await db.execute(stmt.order_by(NamasteCode.code, NamasteCode.system))
    return list(result.scalars().all())


async def list_by_type(
    db: AsyncSession,
    code_type: Icd11CodeType | None = None,
) -> list[Icd11Code]:
    stmt = select(Icd11Code)
    if code_type is not None:
        stmt = stmt.where(Icd11Code.code_type == code_type)
    result = await db.execute(stmt.order_by(Icd11Code.code, Icd11Code.code_type))
    return list(result.scalars().all())


async def categories(db: AsyncSession, system: TraditionalSystem) -> list[str]:
    """Categorías únicas de un sistema tradicional."""
    result = await db.execute(
        select(NamasteCode.category)
        .where(
            NamasteCode.system == system,
            NamasteCode.category.is_not(None),
        )
        .distinct()
        .order_by(NamasteCode.category)
    )
    return [row[0] for row in result.fetchall()]


async def chapters(db: AsyncSession, code_type: Icd11CodeType) -> list[str]:
    result = await db.execute(
        select(Icd11Code.chapter)
        .where(
            Icd11Code.code_type == code_type,
            Icd11Code.chapter.is_not(None),
        )
        .distinct()
        .order_by(Icd11Code.chapter)
    )
    return [row[0] for row in result.fetchall()]


# ── Respuestas ───────────────────────────────────────


async def namaste_responses(
    db: AsyncSession,
    rows: list[NamasteCode],
) -> list[NamasteCodeResponse]:
    """Convierte filas NAMASTE a respuesta, con los atajos de mapeo vigentes."""
    if not rows:
        return []
    result = await db.execute(
        select(NamasteMappingShortcut).where(
            NamasteMappingShortcut.code.in_({r.code for r in rows})
        )
    )
    shortcuts = {s.code: s for s in result.scalars().all()}

    responses = []
    for row in rows:
        shortcut = shortcuts.get(row.code)
        responses.append(
            NamasteCodeResponse.model_validate(row).model_copy(
                update={
                    "icd11_tm2_code": shortcut.icd11_tm2_code if shortcut else None,
                    "icd11_biomedicine_code": shortcut.icd11_biomedicine_code if shortcut else None,
                }
            )
        )
    return responses


async def namaste_response(db: AsyncSession, row: NamasteCode) -> NamasteCodeResponse:
    return (await namaste_responses(db, [row]))[0]


# ── Estadísticas ─────────────────────────────────────


async def _count(db: AsyncSession, stmt) -> int:
    result = await db.execute(stmt)
    return result.scalar() or 0


async def get_stats(db: AsyncSession) -> TerminologyStats:
    """Conteos agregados por sistema tradicional, partición CIE-11 y mapeos."""
    namaste_by_system = dict(
        (await db.execute(
            select(NamasteCode.system, func.count()).group_by(NamasteCode.system)
        )).all()
    )
    icd_by_type = dict(
        (await db.execute(
            select(Icd11Code.code_type, func.count()).group_by(Icd11Code.code_type)
        )).all()
    )
    mapping_count = await _count(db, select(func.count()).select_from(ConceptMapping))
    automatic_count = await _count(
        db,
        select(func.count()).select_from(ConceptMapping).where(ConceptMapping.is_automatic.is_(True)),
    )

    return TerminologyStats(
        namaste_code_count=sum(namaste_by_system.values()),
        icd11_code_count=sum(icd_by_type.values()),
        mapping_count=mapping_count,
        automatic_mapping_count=automatic_count,
        ayurveda_count=namaste_by_system.get(TraditionalSystem.AYURVEDA, 0),
        siddha_count=namaste_by_system.get(TraditionalSystem.SIDDHA, 0),
        unani_count=namaste_by_system.get(TraditionalSystem.UNANI, 0),
        tm2_count=icd_by_type.get(Icd11CodeType.TM2, 0),
        biomedicine_count=icd_by_type.get(Icd11CodeType.BIOMEDICINE, 0),
    )


def parse_uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationException(f"Identificador inválido: '{value}'")
