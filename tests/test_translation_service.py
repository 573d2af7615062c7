"""
Tests de traducción: directa, inversa, transitiva (un salto) y casos vacíos.
"""

import pytest

from app.config import get_settings
from app.core.exceptions import NotFoundException, ValidationException
from app.models.concept_mapping import MappingEquivalence
from app.services import translation_service

settings = get_settings()
NAMASTE = settings.NAMASTE_SYSTEM
TM2 = settings.ICD11_TM2_SYSTEM
BIO = settings.ICD11_BIOMEDICINE_SYSTEM


async def test_direct_equivalent_single_match(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")

    result = await translation_service.namaste_to_tm2(db_session, "AY001")

    assert len(result) == 1
    candidate = result[0]
    assert candidate.target_code == "SR11"
    assert candidate.target_display == "Wind fever disorder (TM2)"
    assert candidate.equivalence == MappingEquivalence.EQUIVALENT
    assert candidate.direction == "forward"
    assert candidate.confidence_score == 1.0


async def test_unusable_equivalences_excluded(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.UNMATCHED)
    await add_mapping(NAMASTE, "AY001", TM2, "SR12", MappingEquivalence.DISJOINT)

    assert await translation_service.namaste_to_tm2(db_session, "AY001") == []


async def test_reverse_edge_is_inverted(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY003", TM2, "SM25", MappingEquivalence.WIDER, 0.8)

    result = await translation_service.tm2_to_namaste(db_session, "SM25")

    assert [c.target_code for c in result] == ["AY003"]
    assert result[0].direction == "reverse"
    assert result[0].equivalence == MappingEquivalence.NARROWER
    assert result[0].confidence_score == pytest.approx(0.8)


async def test_forward_edge_wins_over_reverse(db_session, seed_codes, add_mapping):
    await add_mapping(TM2, "SR11", NAMASTE, "AY001", MappingEquivalence.RELATEDTO, 0.4)
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.EQUIVALENT, 0.9)

    result = await translation_service.namaste_to_tm2(db_session, "AY001")

    assert len(result) == 1
    assert result[0].direction == "forward"
    assert result[0].confidence_score == pytest.approx(0.9)


async def test_candidates_sorted_by_confidence(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR12", MappingEquivalence.EQUIVALENT, 0.5)
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.RELATEDTO, 0.9)
    await add_mapping(NAMASTE, "AY001", TM2, "SM25", MappingEquivalence.EQUIVALENT, 0.9)

    result = await translation_service.namaste_to_tm2(db_session, "AY001")
    assert [c.target_code for c in result] == ["SM25", "SR11", "SR12"]


async def test_transitive_via_tm2(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", MappingEquivalence.EQUIVALENT, 0.9)
    await add_mapping(TM2, "SR11", BIO, "MG26", MappingEquivalence.WIDER, 0.5)

    result = await translation_service.namaste_to_biomedicine(db_session, "AY001")

    assert len(result) == 1
    candidate = result[0]
    assert candidate.direction == "transitive"
    assert candidate.target_code == "MG26"
    assert candidate.via_code == "SR11"
    assert candidate.confidence_score == pytest.approx(0.45)
    assert candidate.equivalence == MappingEquivalence.WIDER
    assert len(candidate.mapping_ids) == 2


async def test_direct_result_suppresses_transitive(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", BIO, "FA20", MappingEquivalence.RELATEDTO, 0.3)
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(TM2, "SR11", BIO, "MG26")

    result = await translation_service.namaste_to_biomedicine(db_session, "AY001")
    assert [(c.target_code, c.direction) for c in result] == [("FA20", "forward")]


async def test_transitive_keeps_best_path_per_target(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11", confidence=0.9)
    await add_mapping(NAMASTE, "AY001", TM2, "SR12", confidence=0.5)
    await add_mapping(TM2, "SR11", BIO, "MG26", confidence=0.5)
    await add_mapping(TM2, "SR12", BIO, "MG26", confidence=1.0)

    result = await translation_service.namaste_to_biomedicine(db_session, "AY001")

    assert len(result) == 1
    assert result[0].via_code == "SR12"
    assert result[0].confidence_score == pytest.approx(0.5)


async def test_bridge_can_be_overridden_or_disabled(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", BIO, "MG26")
    await add_mapping(BIO, "MG26", TM2, "SR12", confidence=0.5)

    disabled = await translation_service.translate(
        db_session, NAMASTE, "AY001", TM2, via_system=None
    )
    assert disabled == []

    via_bio = await translation_service.translate(
        db_session, "NAMASTE", "AY001", "TM2", via_system="BIOMEDICINE"
    )
    assert [(c.target_code, c.via_code) for c in via_bio] == [("SR12", "MG26")]


async def test_no_two_hop_chains(db_session, seed_codes, add_mapping):
    # AY001 → SR11 → MG26 → FA20 necesitaría dos saltos intermedios.
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(TM2, "SR11", BIO, "MG26")
    await add_mapping(BIO, "MG26", NAMASTE, "SD001")

    result = await translation_service.translate(db_session, NAMASTE, "AY001", NAMASTE)
    assert result == []


async def test_unknown_source_code_raises(db_session, seed_codes):
    with pytest.raises(NotFoundException):
        await translation_service.namaste_to_tm2(db_session, "ZZ999")


async def test_unknown_system_raises(db_session, seed_codes):
    with pytest.raises(ValidationException):
        await translation_service.translate(db_session, "LOINC", "AY001", TM2)


async def test_code_without_mappings_returns_empty(db_session, seed_codes):
    assert await translation_service.namaste_to_tm2(db_session, "UN001") == []
