"""
Fixtures compartidas para Pytest.
Configura base de datos de test, clientes HTTP y un vocabulario mínimo.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401
from app.config import get_settings
from app.database import Base, get_db
from app.main import app
from app.models.concept_mapping import MappingEquivalence
from app.models.icd11 import Icd11CodeType
from app.models.namaste import TraditionalSystem
from app.schemas.icd11 import Icd11CodeUpsert
from app.schemas.mapping import CreateMappingRequest
from app.schemas.namaste import NamasteCodeUpsert
from app.services import code_registry_service, mapping_service

settings = get_settings()

NAMASTE = settings.NAMASTE_SYSTEM
TM2 = settings.ICD11_TM2_SYSTEM
BIO = settings.ICD11_BIOMEDICINE_SYSTEM

# ── Engine de test (SQLite async) ────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def session_factory():
    """Fábrica de sesiones independientes (escrituras concurrentes)."""
    return test_session_factory


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test."""

    async def _get_test_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Vocabulario de test ──────────────────────────────

NAMASTE_CODES = [
    ("AY001", "Vataja Jwara", TraditionalSystem.AYURVEDA, "Jwara"),
    ("AY002", "Pittaja Jwara", TraditionalSystem.AYURVEDA, "Jwara"),
    ("AY003", "Amavata", TraditionalSystem.AYURVEDA, "Vatavyadhi"),
    ("SD001", "Vali Suram", TraditionalSystem.SIDDHA, "Suram"),
    ("UN001", "Humma-e-Balghamiya", TraditionalSystem.UNANI, "Humma"),
]

ICD11_CODES = [
    ("SR11", "Wind fever disorder (TM2)", Icd11CodeType.TM2, None),
    ("SR12", "Heat fever disorder (TM2)", Icd11CodeType.TM2, None),
    ("SM25", "Joint obstruction disorder (TM2)", Icd11CodeType.TM2, None),
    ("MG26", "Fever of other or unknown origin", Icd11CodeType.BIOMEDICINE, None),
    ("FA20", "Rheumatoid arthritis", Icd11CodeType.BIOMEDICINE, None),
    ("FA20.0", "Seropositive rheumatoid arthritis", Icd11CodeType.BIOMEDICINE, "FA20"),
]


@pytest_asyncio.fixture
async def seed_codes(db_session: AsyncSession) -> None:
    """Carga un vocabulario mínimo NAMASTE + CIE-11 vía el registro."""
    for code, display, system, category in NAMASTE_CODES:
        await code_registry_service.upsert_namaste(
            db_session,
            NamasteCodeUpsert(
                code=code,
                display=display,
                definition=f"Definición de {display}",
                system=system,
                category=category,
            ),
        )
    for code, title, code_type, parent in ICD11_CODES:
        await code_registry_service.upsert_icd11(
            db_session,
            Icd11CodeUpsert(code=code, title=title, code_type=code_type, parent_code=parent),
        )
    await db_session.commit()


@pytest.fixture
def add_mapping(db_session: AsyncSession):
    """Atajo para crear un mapeo en los tests."""

    async def _add(
        source_system: str,
        source_code: str,
        target_system: str,
        target_code: str,
        equivalence: MappingEquivalence = MappingEquivalence.EQUIVALENT,
        confidence: float | None = None,
        automatic: bool = False,
    ):
        return await mapping_service.add_or_update_mapping(
            db_session,
            CreateMappingRequest(
                source_system=source_system,
                source_code=source_code,
                target_system=target_system,
                target_code=target_code,
                equivalence=equivalence,
                confidence_score=confidence,
            ),
            automatic=automatic,
        )

    return _add
