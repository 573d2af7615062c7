"""
Búsqueda y autocompletado sobre el registro de códigos.

La búsqueda es por subcadena (código, término, definición) con paginación
desde 0. El autocompletado usa prefijos y ordena por niveles: código exacto,
término que empieza con el texto, resto de coincidencias.
"""

import math

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.icd11 import Icd11Code, Icd11CodeType
from app.models.namaste import NamasteCode, TraditionalSystem
from app.schemas.icd11 import Icd11CodeResponse, Icd11ListResponse
from app.schemas.namaste import NamasteCodeResponse, NamasteListResponse
from app.services import code_registry_service as registry

settings = get_settings()

AUTOCOMPLETE_MIN_LENGTH = 2


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _clamp_size(size: int) -> int:
    return max(1, min(size, settings.SEARCH_MAX_PAGE_SIZE))


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, settings.AUTOCOMPLETE_MAX_LIMIT))


async def _paginate(db: AsyncSession, base, order_by: list, page: int, size: int):
    count_stmt = select(func.count()).select_from(base.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0
    pages = math.ceil(total / size) if total else 0

    rows = []
    if page < pages:
        result = await db.execute(base.order_by(*order_by).offset(page * size).limit(size))
        rows = list(result.scalars().all())
    return rows, total, pages


# ── Búsqueda ─────────────────────────────────────────


async def search_namaste(
    db: AsyncSession,
    term: str,
    *,
    page: int = 0,
    size: int = 20,
    system: TraditionalSystem | None = None,
) -> NamasteListResponse:
    """
    Busca códigos NAMASTE por subcadena (sin distinguir mayúsculas) en
    código, término o definición. Una página fuera de rango devuelve items vacíos.
    """
    q = (term or "").strip()
    page = max(page, 0)
    size = _clamp_size(size)

    base = select(NamasteCode)
    if system is not None:
        base = base.where(NamasteCode.system == system)
    if q:
        pattern = f"%{_escape_like(q)}%"
        base = base.where(
            or_(
                NamasteCode.code.ilike(pattern, escape="\\"),
                NamasteCode.display.ilike(pattern, escape="\\"),
                NamasteCode.definition.ilike(pattern, escape="\\"),
            )
        )

    rows, total, pages = await _paginate(
        db, base, [NamasteCode.code, NamasteCode.system], page, size
    )
    return NamasteListResponse(
        items=await registry.namaste_responses(db, rows),
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


async def search_icd11(
    db: AsyncSession,
    term: str,
    *,
    page: int = 0,
    size: int = 20,
    code_type: Icd11CodeType | None = None,
) -> Icd11ListResponse:
    """Igual que search_namaste, sobre código, título y definición CIE-11."""
    q = (term or "").strip()
    page = max(page, 0)
    size = _clamp_size(size)

    base = select(Icd11Code)
    if code_type is not None:
        base = base.where(Icd11Code.code_type == code_type)
    if q:
        pattern = f"%{_escape_like(q)}%"
        base = base.where(
            or_(
                Icd11Code.code.ilike(pattern, escape="\\"),
                Icd11Code.title.ilike(pattern, escape="\\"),
                Icd11Code.definition.ilike(pattern, escape="\\"),
            )
        )

    rows, total, pages = await _paginate(
        db, base, [Icd11Code.code, Icd11Code.code_type], page, size
    )
    return Icd11ListResponse(
        items=[Icd11CodeResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


# ── Autocompletado ───────────────────────────────────


def _ranked_prefix(model, display_col, term: str, limit: int):
    escaped = _escape_like(term)
    prefix = f"{escaped}%"
    word_prefix = f"% {escaped}%"

    tier = case(
        (func.lower(model.code) == term.lower(), 0),
        (display_col.ilike(prefix, escape="\\"), 1),
        else_=2,
    )
    return (
        select(model)
        .where(
            or_(
                model.code.ilike(prefix, escape="\\"),
                display_col.ilike(prefix, escape="\\"),
                display_col.ilike(word_prefix, escape="\\"),
            )
        )
        .order_by(tier, func.lower(display_col), model.code)
        .limit(limit)
    )


async def autocomplete_namaste(
    db: AsyncSession,
    term: str,
    limit: int = 10,
) -> list[NamasteCodeResponse]:
    """Sugerencias NAMASTE; menos de 2 caracteres no consulta la BD."""
    q = (term or "").strip()
    if len(q) < AUTOCOMPLETE_MIN_LENGTH:
        return []

    result = await db.execute(
        _ranked_prefix(NamasteCode, NamasteCode.display, q, _clamp_limit(limit))
    )
    return await registry.namaste_responses(db, list(result.scalars().all()))


async def autocomplete_icd11(
    db: AsyncSession,
    term: str,
    limit: int = 10,
    code_type: Icd11CodeType | None = None,
) -> list[Icd11CodeResponse]:
    q = (term or "").strip()
    if len(q) < AUTOCOMPLETE_MIN_LENGTH:
        return []

    stmt = _ranked_prefix(Icd11Code, Icd11Code.title, q, _clamp_limit(limit))
    if code_type is not None:
        stmt = stmt.where(Icd11Code.code_type == code_type)
    result = await db.execute(stmt)
    return [Icd11CodeResponse.model_validate(r) for r in result.scalars().all()]
