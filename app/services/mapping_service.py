"""
Grafo de mapeos — aristas dirigidas entre códigos de distintos vocabularios.

Cada arista se guarda una sola vez (source → target); la consulta inversa
usa el índice sobre (target_system, target_code). Los atajos NAMASTE
(`namaste_mapping_shortcuts`) se recalculan en la misma transacción que
cualquier escritura que los afecte.
"""

import asyncio
import logging
import weakref
from uuid import UUID

from sqlalchemy import case, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.models.concept_mapping import EQUIVALENCE_RANK, ConceptMapping, MappingEquivalence
from app.models.mapping_shortcut import NamasteMappingShortcut
from app.schemas.mapping import CreateMappingRequest
from app.services import audit_service, code_registry_service as registry

settings = get_settings()
logger = logging.getLogger(__name__)

# Un lock por clave natural; las claves distintas no se bloquean entre sí.
_mapping_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()

_USABLE = [eq for eq in MappingEquivalence if eq.is_usable]


def _lock_for(key: tuple) -> asyncio.Lock:
    lock = _mapping_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _mapping_locks[key] = lock
    return lock


def _rank_expr():
    return case(
        *[(ConceptMapping.equivalence == eq, rank) for eq, rank in EQUIVALENCE_RANK.items()],
        else_=0,
    )


def _edge_order(reverse: bool = False) -> list:
    """Orden determinista: confianza, precisión, antigüedad, código, id."""
    return [
        ConceptMapping.confidence_score.desc(),
        _rank_expr().desc(),
        ConceptMapping.created_at.asc(),
        ConceptMapping.source_code.asc() if reverse else ConceptMapping.target_code.asc(),
        ConceptMapping.id.asc(),
    ]


def _snapshot(mapping: ConceptMapping) -> dict:
    return {
        "source_system": mapping.source_system,
        "source_code": mapping.source_code,
        "target_system": mapping.target_system,
        "target_code": mapping.target_code,
        "equivalence": mapping.equivalence,
        "confidence_score": mapping.confidence_score,
        "mapping_version": mapping.mapping_version,
        "is_automatic": mapping.is_automatic,
    }


# ── Escritura ────────────────────────────────────────


async def add_or_update_mapping(
    db: AsyncSession,
    data: CreateMappingRequest,
    *,
    automatic: bool = False,
) -> ConceptMapping:
    """
    Crea o actualiza la arista identificada por
    (source_system, source_code, target_system, target_code).

    Re-enviar la misma clave actualiza la fila existente (mismo id).
    Ambos extremos deben existir en el registro.
    """
    source_system = registry.normalize_system_uri(data.source_system)
    target_system = registry.normalize_system_uri(data.target_system)
    source_code = data.source_code.strip()
    target_code = data.target_code.strip()

    if data.confidence_score is not None:
        confidence = data.confidence_score
    else:
        confidence = settings.AUTO_MAPPING_CONFIDENCE if automatic else 1.0
    if not 0.0 <= confidence <= 1.0:
        raise ValidationException("confidence_score debe estar entre 0 y 1")

    if source_system == target_system and source_code == target_code:
        raise ValidationException("Un código no puede mapearse a sí mismo")

    if await registry.find_by_system_uri(db, source_system, source_code) is None:
        raise ConflictException(f"El código origen '{source_code}' no existe en {source_system}")
    if await registry.find_by_system_uri(db, target_system, target_code) is None:
        raise ConflictException(f"El código destino '{target_code}' no existe en {target_system}")

    key = (source_system, source_code, target_system, target_code)
    async with _lock_for(key):
        try:
            mapping, old_data = await _write_edge(
                db, key, data, confidence=confidence, automatic=automatic
            )
        except IntegrityError:
            # Otra sesión insertó la misma clave: se reintenta como actualización.
            await db.rollback()
            logger.info(f"Clave de mapeo duplicada {key}, reintentando como actualización")
            mapping, old_data = await _write_edge(
                db, key, data, confidence=confidence, automatic=automatic
            )

        await _refresh_endpoints(db, *mapping.natural_key)
        await audit_service.log_action(
            db,
            entity="concept_mapping",
            entity_id=str(mapping.id),
            action="update" if old_data else "create",
            old_data=old_data,
            new_data=_snapshot(mapping),
        )
        await db.commit()

    await db.refresh(mapping)
    logger.info(f"Mapeo guardado: {mapping!r}")
    return mapping


async def _write_edge(
    db: AsyncSession,
    key: tuple[str, str, str, str],
    data: CreateMappingRequest,
    *,
    confidence: float,
    automatic: bool,
) -> tuple[ConceptMapping, dict | None]:
    source_system, source_code, target_system, target_code = key
    result = await db.execute(
        select(ConceptMapping)
        .where(
            ConceptMapping.source_system == source_system,
            ConceptMapping.source_code == source_code,
            ConceptMapping.target_system == target_system,
            ConceptMapping.target_code == target_code,
        )
        .with_for_update()
    )
    mapping = result.scalar_one_or_none()
    old_data = None
    if mapping is None:
        mapping = ConceptMapping(
            source_system=source_system,
            source_code=source_code,
            target_system=target_system,
            target_code=target_code,
        )
        db.add(mapping)
    else:
        old_data = _snapshot(mapping)

    mapping.equivalence = data.equivalence
    mapping.comment = data.comment
    mapping.confidence_score = confidence
    mapping.mapping_version = data.mapping_version or settings.MAPPING_VERSION
    mapping.is_automatic = automatic
    await db.flush()
    return mapping, old_data


async def remove_mapping(db: AsyncSession, mapping_id: UUID) -> None:
    """Elimina una arista y recalcula los atajos afectados."""
    mapping = await get_mapping(db, mapping_id)
    snapshot = _snapshot(mapping)
    key = mapping.natural_key

    await db.delete(mapping)
    await db.flush()
    await _refresh_endpoints(db, *key)
    await audit_service.log_action(
        db,
        entity="concept_mapping",
        entity_id=str(mapping_id),
        action="delete",
        old_data=snapshot,
    )
    await db.commit()
    logger.info(f"Mapeo eliminado: {mapping_id}")


async def _refresh_endpoints(
    db: AsyncSession,
    source_system: str,
    source_code: str,
    target_system: str,
    target_code: str,
) -> None:
    if source_system == settings.NAMASTE_SYSTEM:
        await refresh_shortcut(db, source_code)
    if target_system == settings.NAMASTE_SYSTEM:
        await refresh_shortcut(db, target_code)


# ── Lectura ──────────────────────────────────────────


async def get_mapping(db: AsyncSession, mapping_id: UUID) -> ConceptMapping:
    mapping = await db.get(ConceptMapping, mapping_id)
    if mapping is None:
        raise NotFoundException("Mapeo")
    return mapping


async def edges_from(db: AsyncSession, system: str, code: str) -> list[ConceptMapping]:
    """Aristas salientes de (system, code), en orden determinista."""
    system_uri = registry.normalize_system_uri(system)
    result = await db.execute(
        select(ConceptMapping)
        .where(
            ConceptMapping.source_system == system_uri,
            ConceptMapping.source_code == code,
        )
        .order_by(*_edge_order())
    )
    return list(result.scalars().all())


async def edges_to(db: AsyncSession, system: str, code: str) -> list[ConceptMapping]:
    """Aristas entrantes de (system, code) usando el índice inverso."""
    system_uri = registry.normalize_system_uri(system)
    result = await db.execute(
        select(ConceptMapping)
        .where(
            ConceptMapping.target_system == system_uri,
            ConceptMapping.target_code == code,
        )
        .order_by(*_edge_order(reverse=True))
    )
    return list(result.scalars().all())


async def list_mappings(
    db: AsyncSession,
    source_system: str | None = None,
    target_system: str | None = None,
    equivalence: MappingEquivalence | None = None,
) -> list[ConceptMapping]:
    stmt = select(ConceptMapping)
    if source_system:
        stmt = stmt.where(ConceptMapping.source_system == registry.normalize_system_uri(source_system))
    if target_system:
        stmt = stmt.where(ConceptMapping.target_system == registry.normalize_system_uri(target_system))
    if equivalence is not None:
        stmt = stmt.where(ConceptMapping.equivalence == equivalence)

    stmt = stmt.order_by(
        ConceptMapping.source_system,
        ConceptMapping.target_system,
        ConceptMapping.source_code,
        *_edge_order(),
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def mappings_for_code(db: AsyncSession, system: str, code: str) -> list[ConceptMapping]:
    """Aristas en ambas direcciones: primero salientes, luego entrantes."""
    outgoing = await edges_from(db, system, code)
    incoming = await edges_to(db, system, code)
    return outgoing + incoming


# ── Atajos NAMASTE ───────────────────────────────────


async def _best_target(db: AsyncSession, code: str, target_system: str) -> str | None:
    result = await db.execute(
        select(ConceptMapping.target_code)
        .where(
            ConceptMapping.source_system == settings.NAMASTE_SYSTEM,
            ConceptMapping.source_code == code,
            ConceptMapping.target_system == target_system,
            ConceptMapping.equivalence.in_(_USABLE),
        )
        .order_by(*_edge_order())
        .limit(1)
    )
    row = result.first()
    return row[0] if row else None


async def refresh_shortcut(db: AsyncSession, code: str) -> NamasteMappingShortcut | None:
    """
    Recalcula el atajo TM2/Biomedicina de un código NAMASTE a partir de su
    arista utilizable más fuerte. Sin aristas, el atajo se elimina.
    """
    tm2 = await _best_target(db, code, settings.ICD11_TM2_SYSTEM)
    biomedicine = await _best_target(db, code, settings.ICD11_BIOMEDICINE_SYSTEM)

    if tm2 is None and biomedicine is None:
        await db.execute(
            delete(NamasteMappingShortcut).where(NamasteMappingShortcut.code == code)
        )
        return None

    result = await db.execute(
        select(NamasteMappingShortcut).where(NamasteMappingShortcut.code == code)
    )
    shortcut = result.scalar_one_or_none()
    if shortcut is None:
        shortcut = NamasteMappingShortcut(code=code)
        db.add(shortcut)
    shortcut.icd11_tm2_code = tm2
    shortcut.icd11_biomedicine_code = biomedicine
    await db.flush()
    return shortcut


async def refresh_shortcuts_for_code(db: AsyncSession, system_uri: str, code: str) -> None:
    """Recalcula los atajos que dependen de (system_uri, code)."""
    if system_uri == settings.NAMASTE_SYSTEM:
        await refresh_shortcut(db, code)
        return

    result = await db.execute(
        select(ConceptMapping.source_code)
        .where(
            ConceptMapping.source_system == settings.NAMASTE_SYSTEM,
            ConceptMapping.target_system == system_uri,
            ConceptMapping.target_code == code,
        )
        .distinct()
    )
    for (namaste_code,) in result.all():
        await refresh_shortcut(db, namaste_code)


async def has_mapping_to_system(
    db: AsyncSession,
    source_system: str,
    source_code: str,
    target_system: str,
) -> bool:
    result = await db.execute(
        select(ConceptMapping.id)
        .where(
            ConceptMapping.source_system == source_system,
            ConceptMapping.source_code == source_code,
            ConceptMapping.target_system == target_system,
        )
        .limit(1)
    )
    return result.first() is not None
