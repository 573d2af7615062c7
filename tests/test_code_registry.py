"""
Tests del registro de códigos NAMASTE / CIE-11.
"""

import pytest

from app.config import get_settings
from app.core.exceptions import NotFoundException, ValidationException
from app.models.icd11 import Icd11CodeType
from app.models.namaste import TraditionalSystem
from app.schemas.icd11 import Icd11CodeUpsert
from app.schemas.namaste import NamasteCodeUpsert
from app.services import code_registry_service

settings = get_settings()
NAMASTE = settings.NAMASTE_SYSTEM
TM2 = settings.ICD11_TM2_SYSTEM
BIO = settings.ICD11_BIOMEDICINE_SYSTEM


async def test_upsert_namaste_round_trip(db_session):
    await code_registry_service.upsert_namaste(
        db_session,
        NamasteCodeUpsert(
            code="AY100",
            display="Kasa",
            definition="Cough",
            system=TraditionalSystem.AYURVEDA,
            category="Pranavaha",
            who_terminology_code="TM-A-100",
        ),
    )
    await db_session.commit()

    entry = await code_registry_service.get_namaste(db_session, "AY100")
    assert entry.display == "Kasa"
    assert entry.system == TraditionalSystem.AYURVEDA
    assert entry.category == "Pranavaha"
    assert entry.who_terminology_code == "TM-A-100"


async def test_upsert_namaste_updates_existing_row(db_session):
    data = NamasteCodeUpsert(code="AY100", display="Kasa", system=TraditionalSystem.AYURVEDA)
    first = await code_registry_service.upsert_namaste(db_session, data)
    second = await code_registry_service.upsert_namaste(
        db_session, data.model_copy(update={"display": "Kasa Roga"})
    )
    await db_session.commit()

    assert first.id == second.id
    rows = await code_registry_service.list_by_system(db_session, TraditionalSystem.AYURVEDA)
    assert [r.display for r in rows] == ["Kasa Roga"]


@pytest.mark.parametrize("code", ["-AY1", "AY 1", "AY#1", ".AY1"])
async def test_invalid_code_pattern_rejected(db_session, code):
    with pytest.raises(ValidationException):
        await code_registry_service.upsert_namaste(
            db_session,
            NamasteCodeUpsert(code=code, display="x", system=TraditionalSystem.SIDDHA),
        )


async def test_icd11_parent_must_exist(db_session):
    with pytest.raises(ValidationException):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(
                code="FA20.0", title="Child", code_type=Icd11CodeType.BIOMEDICINE, parent_code="FA20"
            ),
        )


async def test_icd11_parent_cycle_rejected(db_session):
    for code, parent in (("A1", None), ("A2", "A1"), ("A3", "A2")):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code=code, title=code, code_type=Icd11CodeType.TM2, parent_code=parent),
        )

    with pytest.raises(ValidationException):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code="A1", title="A1", code_type=Icd11CodeType.TM2, parent_code="A3"),
        )
    with pytest.raises(ValidationException):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code="A2", title="A2", code_type=Icd11CodeType.TM2, parent_code="A2"),
        )


async def test_icd11_parent_in_other_partition_rejected(db_session, seed_codes):
    with pytest.raises(ValidationException):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code="SR99", title="x", code_type=Icd11CodeType.TM2, parent_code="FA20"),
        )


async def test_get_unknown_code_raises_not_found(db_session, seed_codes):
    with pytest.raises(NotFoundException):
        await code_registry_service.get_namaste(db_session, "NOPE")
    with pytest.raises(NotFoundException):
        await code_registry_service.get_icd11(db_session, "SR11", Icd11CodeType.BIOMEDICINE)


async def test_find_by_system_uri(db_session, seed_codes):
    assert (await code_registry_service.find_by_system_uri(db_session, NAMASTE, "AY001")).display == "Vataja Jwara"
    assert (await code_registry_service.find_by_system_uri(db_session, TM2, "SR11")).code == "SR11"
    assert await code_registry_service.find_by_system_uri(db_session, BIO, "SR11") is None


def test_normalize_system_accepts_aliases():
    assert code_registry_service.normalize_system_uri("tm2") == TM2
    assert code_registry_service.normalize_system_uri(BIO) == BIO
    with pytest.raises(ValidationException):
        code_registry_service.normalize_system_uri("http://example.org/unknown")


async def test_categories_and_chapters_sorted(db_session):
    for code, category in (("AY1", "Jwara"), ("AY2", "Atisara"), ("AY3", "Jwara")):
        await code_registry_service.upsert_namaste(
            db_session,
            NamasteCodeUpsert(code=code, display=code, system=TraditionalSystem.AYURVEDA, category=category),
        )
    for code, chapter in (("X1", "Chapter B"), ("X2", "Chapter A")):
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code=code, title=code, code_type=Icd11CodeType.TM2, chapter=chapter),
        )
    await db_session.commit()

    assert await code_registry_service.categories(db_session, TraditionalSystem.AYURVEDA) == ["Atisara", "Jwara"]
    assert await code_registry_service.categories(db_session, TraditionalSystem.UNANI) == []
    assert await code_registry_service.chapters(db_session, Icd11CodeType.TM2) == ["Chapter A", "Chapter B"]


async def test_stats(db_session, seed_codes, add_mapping):
    await add_mapping(NAMASTE, "AY001", TM2, "SR11")
    await add_mapping(NAMASTE, "AY002", TM2, "SR12", automatic=True)

    stats = await code_registry_service.get_stats(db_session)
    assert stats.namaste_code_count == 5
    assert stats.ayurveda_count == 3
    assert stats.siddha_count == 1
    assert stats.unani_count == 1
    assert stats.icd11_code_count == 6
    assert stats.tm2_count == 3
    assert stats.biomedicine_count == 3
    assert stats.mapping_count == 2
    assert stats.automatic_mapping_count == 1
