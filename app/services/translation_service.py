"""
Resolución de traducciones entre vocabularios sobre el grafo de mapeos.

Orden de resolución:
  1. Directo: aristas salientes hacia el sistema destino, más aristas
     entrantes desde ese sistema con la equivalencia invertida.
  2. Transitivo: si no hay directos, un único salto por el vocabulario
     puente (TM2 por defecto). Nunca más de un salto.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import NotFoundException
from app.models.concept_mapping import ConceptMapping
from app.schemas.mapping import TranslationCandidate
from app.services import code_registry_service as registry
from app.services import mapping_service

settings = get_settings()
logger = logging.getLogger(__name__)

_DEFAULT_BRIDGE = object()


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _sort_key(candidate: TranslationCandidate) -> tuple:
    return (
        -candidate.confidence_score,
        -candidate.equivalence.rank,
        _naive_utc(candidate.created_at),
        candidate.target_code,
        [str(mid) for mid in candidate.mapping_ids],
    )


def _forward(edge: ConceptMapping) -> TranslationCandidate:
    return TranslationCandidate(
        source_system=edge.source_system,
        source_code=edge.source_code,
        target_system=edge.target_system,
        target_code=edge.target_code,
        equivalence=edge.equivalence,
        confidence_score=edge.confidence_score,
        direction="forward",
        mapping_ids=[edge.id],
        created_at=edge.created_at,
    )


def _reverse(edge: ConceptMapping) -> TranslationCandidate:
    return TranslationCandidate(
        source_system=edge.target_system,
        source_code=edge.target_code,
        target_system=edge.source_system,
        target_code=edge.source_code,
        equivalence=edge.equivalence.inverse(),
        confidence_score=edge.confidence_score,
        direction="reverse",
        mapping_ids=[edge.id],
        created_at=edge.created_at,
    )


async def _direct(
    db: AsyncSession,
    source_system: str,
    source_code: str,
    target_system: str,
) -> list[TranslationCandidate]:
    """Candidatos directos; una arista saliente gana a una entrante al mismo destino."""
    found: dict[str, TranslationCandidate] = {}

    for edge in await mapping_service.edges_from(db, source_system, source_code):
        if edge.target_system != target_system or not edge.equivalence.is_usable:
            continue
        found.setdefault(edge.target_code, _forward(edge))

    for edge in await mapping_service.edges_to(db, source_system, source_code):
        if edge.source_system != target_system or not edge.equivalence.is_usable:
            continue
        if edge.source_code in found:
            continue
        found[edge.source_code] = _reverse(edge)

    return sorted(found.values(), key=_sort_key)


def _chain(
    first: TranslationCandidate,
    second: TranslationCandidate,
    source_system: str,
    source_code: str,
) -> TranslationCandidate:
    equivalence = first.equivalence
    if second.equivalence.rank < first.equivalence.rank:
        equivalence = second.equivalence
    return TranslationCandidate(
        source_system=source_system,
        source_code=source_code,
        target_system=second.target_system,
        target_code=second.target_code,
        equivalence=equivalence,
        confidence_score=first.confidence_score * second.confidence_score,
        direction="transitive",
        via_code=first.target_code,
        mapping_ids=first.mapping_ids + second.mapping_ids,
        created_at=max(_naive_utc(first.created_at), _naive_utc(second.created_at)),
    )


async def _transitive(
    db: AsyncSession,
    source_system: str,
    source_code: str,
    bridge_system: str,
    target_system: str,
) -> list[TranslationCandidate]:
    best: dict[str, TranslationCandidate] = {}
    for hop in await _direct(db, source_system, source_code, bridge_system):
        for onward in await _direct(db, bridge_system, hop.target_code, target_system):
            if target_system == source_system and onward.target_code == source_code:
                continue
            candidate = _chain(hop, onward, source_system, source_code)
            current = best.get(candidate.target_code)
            if current is None or _sort_key(candidate) < _sort_key(current):
                best[candidate.target_code] = candidate
    return sorted(best.values(), key=_sort_key)


async def translate(
    db: AsyncSession,
    source_system: str,
    source_code: str,
    target_system: str,
    *,
    via_system=_DEFAULT_BRIDGE,
) -> list[TranslationCandidate]:
    """
    Traduce (source_system, source_code) al sistema destino.

    via_system: vocabulario puente para el salto transitivo. Por defecto
    settings.TRANSLATION_VIA_SYSTEM; None lo deshabilita. Se ignora si
    coincide con el origen o el destino.

    Lanza NotFoundException si el código origen no existe. Sin mapeos
    utilizables devuelve lista vacía.
    """
    source_uri = registry.normalize_system_uri(source_system)
    target_uri = registry.normalize_system_uri(target_system)
    code = (source_code or "").strip()

    if await registry.find_by_system_uri(db, source_uri, code) is None:
        raise NotFoundException(detail=f"Código '{code}' no encontrado en {source_uri}")

    candidates = await _direct(db, source_uri, code, target_uri)

    if not candidates:
        bridge = settings.TRANSLATION_VIA_SYSTEM if via_system is _DEFAULT_BRIDGE else via_system
        if bridge:
            bridge_uri = registry.normalize_system_uri(bridge)
            if bridge_uri not in (source_uri, target_uri):
                candidates = await _transitive(db, source_uri, code, bridge_uri, target_uri)

    displays = await registry.displays_for(
        db, {(c.target_system, c.target_code) for c in candidates}
    )
    for candidate in candidates:
        candidate.target_display = displays.get((candidate.target_system, candidate.target_code))

    logger.debug(
        f"Traducción {source_uri}|{code} → {target_uri}: {len(candidates)} candidato(s)"
    )
    return candidates


# ── Atajos por par de vocabularios ───────────────────


async def namaste_to_tm2(db: AsyncSession, code: str) -> list[TranslationCandidate]:
    return await translate(db, settings.NAMASTE_SYSTEM, code, settings.ICD11_TM2_SYSTEM)


async def tm2_to_namaste(db: AsyncSession, code: str) -> list[TranslationCandidate]:
    return await translate(db, settings.ICD11_TM2_SYSTEM, code, settings.NAMASTE_SYSTEM)


async def namaste_to_biomedicine(db: AsyncSession, code: str) -> list[TranslationCandidate]:
    return await translate(db, settings.NAMASTE_SYSTEM, code, settings.ICD11_BIOMEDICINE_SYSTEM)
