"""
Tests del grafo de mapeos: alta idempotente, validaciones, orden
determinista, índice inverso y atajos NAMASTE.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select, update

from app.config import get_settings
from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.models.audit_log import AuditLog
from app.models.concept_mapping import ConceptMapping, MappingEquivalence
from app.models.namaste import TraditionalSystem
from app.schemas.mapping import CreateMappingRequest
from app.schemas.namaste import NamasteCodeUpsert
from app.services import code_registry_service, mapping_service

settings = get_settings()
NAMASTE = settings.NAMASTE_SYSTEM
TM2 = settings.ICD11_TM2_SYSTEM
BIO = settings.ICD11_BIOMEDICINE_SYSTEM


async def _shortcut(db, code):
    entry = await code_registry_service.get_namaste(db, code)
    return await code_registry_service.namaste_response(db, entry)


async def test_add_mapping_defaults(db_session, seed_codes, add_mapping):
    mapping = await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    assert mapping.confidence_score == 1.0
    assert mapping.is_automatic is False
    assert mapping.mapping_version == settings.MAPPING_VERSION
    assert mapping.equivalence == MappingEquivalence.EQUIVALENT


async def test_automatic_mapping_default_confidence(db_session, seed_codes, add_mapping):
    mapping = await add_mapping(NAMASTE, "AY001", TM2, "SR11", automatic=True)
    assert mapping.confidence_score == pytest.approx(settings.AUTO_MAPPING_CONFIDENCE)
    assert mapping.is_automatic is True


async def test_resubmitting_same_key_updates_in_place(db_session, seed_codes, add_mapping):
    first = await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.EQUIVALENT, 0.9)
    second = await add_mapping(NAMASTE, "AY001", "TM2", "SR11", MappingEquivalence.WIDER, 0.6)

    assert first.id == second.id
    total = (await db_session.execute(select(func.count()).select_from(ConceptMapping))).scalar()
    assert total == 1
    assert second.equivalence == MappingEquivalence.WIDER
    assert second.confidence_score == pytest.approx(0.6)


async def test_concurrent_writes_same_key_yield_one_row(seed_codes, session_factory):

    async def write(equivalence):
        async with session_factory() as db:
            return await mapping_service.add_or_update_mapping(
                db,
                CreateMappingRequest(
                    source_system=NAMASTE,
                    source_code="AY001",
                    target_system=TM2,
                    target_code="SR11",
                    equivalence=equivalence,
                ),
            )

    results = await asyncio.gather(
        write(MappingEquivalence.EQUIVALENT), write(MappingEquivalence.WIDER)
    )
    assert results[0].id == results[1].id


async def test_unknown_code_is_conflict(db_session, seed_codes, add_mapping):
    with pytest.raises(ConflictException):
        await add_mapping(NAMASTE, "AY001", TM2, "NOPE")
    with pytest.raises(ConflictException):
        await add_mapping(NAMASTE, "NOPE", TM2, "SR11")


async def test_unknown_system_is_validation_error(db_session, seed_codes, add_mapping):
    with pytest.raises(ValidationException):
        await add_mapping("http://example.org/x", "AY001", TM2, "SR11")


@pytest.mark.parametrize("confidence", [-0.1, 1.5])
def test_confidence_out_of_range_rejected_by_schema(confidence):
    with pytest.raises(ValidationError):
        CreateMappingRequest(
            source_system=NAMASTE,
            source_code="AY001",
            target_system=TM2,
            target_code="SR11",
            equivalence=MappingEquivalence.EQUIVALENT,
            confidence_score=confidence,
        )


async def test_confidence_out_of_range_rejected_by_service(db_session, seed_codes):
    # model_construct omite la validación de pydantic
    request = CreateMappingRequest.model_construct(
        source_system=NAMASTE,
        source_code="AY001",
        target_system=TM2,
        target_code="SR11",
        equivalence=MappingEquivalence.EQUIVALENT,
        comment=None,
        confidence_score=1.5,
        mapping_version=None,
    )
    with pytest.raises(ValidationException):
        await mapping_service.add_or_update_mapping(db_session, request)
    total = (await db_session.execute(select(func.count()).select_from(ConceptMapping))).scalar()
    assert total == 0


async def test_edges_ordered_by_confidence_then_precision(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR12", MappingEquivalence.RELATEDTO, 0.7)
    await add_mapping(NAMASTE, "AY001", TM2, "SM25", MappingEquivalence.EQUIVALENT, 0.7)
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.INEXACT, 0.9)

    edges = await mapping_service.edges_from(db_session, NAMASTE, "AY001")
    assert [e.target_code for e in edges] == ["SR11", "SM25", "SR12"]


async def test_edges_tie_broken_by_creation_time(db_session, seed_codes, add_mapping):
    newer = await add_mapping(NAMASTE, "AY001", TM2, "SR11", confidence=0.8)
    older = await add_mapping(NAMASTE, "AY001", TM2, "SR12", confidence=0.8)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for mapping, offset in ((older, 0), (newer, 60)):
        await db_session.execute(
            update(ConceptMapping)
            .where(ConceptMapping.id == mapping.id)
            .values(created_at=base + timedelta(seconds=offset))
        )
    await db_session.commit()

    edges = await mapping_service.edges_from(db_session, NAMASTE, "AY001")
    assert [e.target_code for e in edges] == ["SR12", "SR11"]


async def test_edges_to_uses_reverse_index(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(NAMASTE, "SD001", TM2, "SR11", confidence=0.5)

    incoming = await mapping_service.edges_to(db_session, TM2, "SR11")
    assert [(e.source_code, e.confidence_score) for e in incoming] == [("AY001", 1.0), ("SD001", 0.5)]
    assert await mapping_service.edges_from(db_session, TM2, "SR11") == []


async def test_mappings_for_code_both_directions(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(TM2, "SR11", BIO, "MG26")

    edges = await mapping_service.mappings_for_code(db_session, "TM2", "SR11")
    assert {(e.source_code, e.target_code) for e in edges} == {("SR11", "MG26"), ("AY001", "SR11")}


async def test_shortcut_tracks_strongest_usable_edge(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR12", MappingEquivalence.RELATEDTO, 0.6)
    strong = await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.EQUIVALENT, 0.9)
    await add_mapping(NAMASTE, "AY001", BIO, "MG26", MappingEquivalence.DISJOINT, 1.0)

    response = await _shortcut(db_session, "AY001")
    assert response.icd11_tm2_code == "SR11"
    assert response.icd11_biomedicine_code is None

    await mapping_service.remove_mapping(db_session, strong.id)
    response = await _shortcut(db_session, "AY001")
    assert response.icd11_tm2_code == "SR12"


async def test_homonym_codes_share_shortcut(db_session, seed_codes, add_mapping):
    homonym = await code_registry_service.upsert_namaste(
        db_session,
        NamasteCodeUpsert(code="AY001", display="Siddha homonym", system=TraditionalSystem.SIDDHA),
    )
    await db_session.commit()
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    siddha = await code_registry_service.namaste_response(db_session, homonym)
    ayurveda = await _shortcut(db_session, "AY001")
    assert siddha.icd11_tm2_code == ayurveda.icd11_tm2_code == "SR11"


async def test_remove_mapping_clears_shortcut(db_session, seed_codes, add_mapping):
    mapping = await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    assert (await _shortcut(db_session, "AY001")).icd11_tm2_code == "SR11"

    await mapping_service.remove_mapping(db_session, mapping.id)

    response = await _shortcut(db_session, "AY001")
    assert response.icd11_tm2_code is None
    assert await mapping_service.edges_from(db_session, NAMASTE, "AY001") == []
    assert await mapping_service.edges_to(db_session, TM2, "SR11") == []


async def test_remove_unknown_mapping_raises(db_session, seed_codes):
    with pytest.raises(NotFoundException):
        await mapping_service.remove_mapping(db_session, uuid.uuid4())


async def test_mapping_writes_are_audited(db_session, seed_codes, add_mapping):
    mapping = await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.WIDER)
    await mapping_service.remove_mapping(db_session, mapping.id)

    result = await db_session.execute(
        select(AuditLog.action).where(AuditLog.entity == "concept_mapping")
    )
    assert sorted(row[0] for row in result.all()) == ["create", "delete", "update"]
