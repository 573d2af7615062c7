"""
Endpoints de terminología: búsqueda, autocompletado, traducción, grafo de
mapeos, estadísticas y jobs administrativos.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.admin_job import JobType
from app.models.concept_mapping import MappingEquivalence
from app.models.icd11 import Icd11CodeType
from app.models.namaste import TraditionalSystem
from app.schemas.admin_job import AdminJobAccepted, AdminJobResponse
from app.schemas.audit_log import AuditLogResponse
from app.schemas.icd11 import Icd11CodeResponse, Icd11ListResponse
from app.schemas.mapping import (
    CreateMappingRequest,
    MappingResponse,
    TerminologyStats,
    TranslationCandidate,
)
from app.schemas.namaste import NamasteCodeResponse, NamasteListResponse
from app.services import (
    admin_job_service,
    audit_service,
    code_registry_service,
    mapping_service,
    search_service,
    translation_service,
)

router = APIRouter()


# ── NAMASTE ──────────────────────────────────────────


@router.get("/namaste/search", response_model=NamasteListResponse)
async def search_namaste(
    term: str = Query(..., min_length=1, description="Texto a buscar (código, término o definición)"),
    page: int = Query(0, ge=0, description="Página (desde 0)"),
    size: int = Query(20, ge=1, description="Tamaño de página (máx. 100)"),
    system: TraditionalSystem | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Búsqueda paginada de códigos NAMASTE."""
    return await search_service.search_namaste(db, term, page=page, size=size, system=system)


@router.get("/namaste/autocomplete", response_model=list[NamasteCodeResponse])
async def autocomplete_namaste(
    term: str = Query(""),
    limit: int = Query(10, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Sugerencias NAMASTE por prefijo. Menos de 2 caracteres devuelve []."""
    return await search_service.autocomplete_namaste(db, term, limit)


@router.get("/namaste/system/{system}", response_model=list[NamasteCodeResponse])
async def list_namaste_by_system(
    system: TraditionalSystem,
    db: AsyncSession = Depends(get_db),
):
    rows = await code_registry_service.list_by_system(db, system)
    return await code_registry_service.namaste_responses(db, rows)


@router.get("/namaste/categories/{system}", response_model=list[str])
async def list_namaste_categories(
    system: TraditionalSystem,
    db: AsyncSession = Depends(get_db),
):
    return await code_registry_service.categories(db, system)


@router.get("/namaste/code/{code:path}", response_model=NamasteCodeResponse)
async def get_namaste_code(
    code: str,
    system: TraditionalSystem | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Obtiene un código NAMASTE (con sus atajos TM2 / Biomedicina)."""
    entry = await code_registry_service.get_namaste(db, code, system)
    return await code_registry_service.namaste_response(db, entry)


# ── CIE-11 ───────────────────────────────────────────


@router.get("/icd11/search", response_model=Icd11ListResponse)
async def search_icd11(
    term: str = Query(..., min_length=1),
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1),
    code_type: Icd11CodeType | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Búsqueda paginada de códigos CIE-11 (TM2 y/o Biomedicina)."""
    return await search_service.search_icd11(db, term, page=page, size=size, code_type=code_type)


@router.get("/icd11/autocomplete", response_model=list[Icd11CodeResponse])
async def autocomplete_icd11(
    term: str = Query(""),
    limit: int = Query(10, ge=1),
    code_type: Icd11CodeType | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await search_service.autocomplete_icd11(db, term, limit, code_type)


@router.get("/icd11/type/{code_type}", response_model=list[Icd11CodeResponse])
async def list_icd11_by_type(
    code_type: Icd11CodeType,
    db: AsyncSession = Depends(get_db),
):
    return await code_registry_service.list_by_type(db, code_type)


@router.get("/icd11/chapters/{code_type}", response_model=list[str])
async def list_icd11_chapters(
    code_type: Icd11CodeType,
    db: AsyncSession = Depends(get_db),
):
    return await code_registry_service.chapters(db, code_type)


@router.get("/icd11/code/{code:path}", response_model=Icd11CodeResponse)
async def get_icd11_code(
    code: str,
    code_type: Icd11CodeType | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await code_registry_service.get_icd11(db, code, code_type)


# ── Traducción ───────────────────────────────────────


@router.get("/translate", response_model=list[TranslationCandidate])
async def translate(
    code: str = Query(..., min_length=1),
    system: str = Query(..., description="URI o alias del sistema origen"),
    targetsystem: str = Query(..., description="URI o alias del sistema destino"),
    db: AsyncSession = Depends(get_db),
):
    """Traducción general entre vocabularios (directa, inversa o transitiva)."""
    return await translation_service.translate(db, system, code, targetsystem)


@router.get("/translate/namaste-to-tm2/{code:path}", response_model=list[TranslationCandidate])
async def namaste_to_tm2(code: str, db: AsyncSession = Depends(get_db)):
    return await translation_service.namaste_to_tm2(db, code)


@router.get("/translate/tm2-to-namaste/{code:path}", response_model=list[TranslationCandidate])
async def tm2_to_namaste(code: str, db: AsyncSession = Depends(get_db)):
    return await translation_service.tm2_to_namaste(db, code)


@router.get(
    "/translate/namaste-to-biomedicine/{code:path}",
    response_model=list[TranslationCandidate],
)
async def namaste_to_biomedicine(code: str, db: AsyncSession = Depends(get_db)):
    return await translation_service.namaste_to_biomedicine(db, code)


# ── Grafo de mapeos ──────────────────────────────────


@router.post("/mapping", response_model=MappingResponse)
async def create_mapping(
    data: CreateMappingRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Crea o actualiza un mapeo. Re-enviar la misma clave
    (source_system, source_code, target_system, target_code) actualiza la
    fila existente y conserva su id.
    """
    return await mapping_service.add_or_update_mapping(db, data)


@router.get("/mapping", response_model=list[MappingResponse])
async def list_mappings(
    source_system: str | None = Query(None),
    target_system: str | None = Query(None),
    equivalence: MappingEquivalence | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await mapping_service.list_mappings(db, source_system, target_system, equivalence)


@router.get("/mapping/{system}/{code:path}", response_model=list[MappingResponse])
async def mappings_for_code(
    system: str,
    code: str,
    db: AsyncSession = Depends(get_db),
):
    """Mapeos en ambas direcciones de un código (system como alias: NAMASTE, TM2, BIOMEDICINE)."""
    return await mapping_service.mappings_for_code(db, system, code)


@router.delete("/mapping/{mapping_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mapping(
    mapping_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    await mapping_service.remove_mapping(db, mapping_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Estadísticas y auditoría ─────────────────────────


@router.get("/stats", response_model=TerminologyStats)
async def terminology_stats(db: AsyncSession = Depends(get_db)):
    """Conteos por sistema tradicional, partición CIE-11 y mapeos."""
    return await code_registry_service.get_stats(db)


@router.get("/audit-log", response_model=AuditLogResponse)
async def get_audit_log(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    action: str | None = Query(None, description="Filtrar por acción"),
    entity: str | None = Query(None, description="Filtrar por entidad"),
    db: AsyncSession = Depends(get_db),
):
    """Registro de auditoría paginado (más reciente primero)."""
    return await audit_service.get_audit_logs(
        db, page=page, size=size, action=action, entity=entity
    )


# ── Jobs administrativos ─────────────────────────────


async def _trigger(db: AsyncSession, job_type: JobType) -> AdminJobAccepted:
    job = await admin_job_service.create_job(db, job_type)
    await admin_job_service.enqueue_job(db, job)
    return AdminJobAccepted(
        job_id=job.id,
        job_type=job.job_type,
        status=job.status,
        message="Job encolado; consulte su estado en /admin/jobs/{id}",
    )


@router.post(
    "/admin/generate-mappings",
    response_model=AdminJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_generate_mappings(db: AsyncSession = Depends(get_db)):
    """Encola la generación automática de mapeos desde el CSV NAMASTE."""
    return await _trigger(db, JobType.GENERATE_MAPPINGS)


@router.post(
    "/admin/reload-namaste",
    response_model=AdminJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_reload_namaste(db: AsyncSession = Depends(get_db)):
    """Encola la recarga del vocabulario NAMASTE."""
    return await _trigger(db, JobType.RELOAD_NAMASTE)


@router.post(
    "/admin/sync-icd11",
    response_model=AdminJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_sync_icd11(db: AsyncSession = Depends(get_db)):
    """Encola la sincronización CIE-11 con la API de la OMS."""
    return await _trigger(db, JobType.SYNC_ICD11)


@router.get("/admin/jobs", response_model=list[AdminJobResponse])
async def list_jobs(
    job_type: JobType | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await admin_job_service.list_jobs(db, job_type, limit)


@router.get("/admin/jobs/{job_id}", response_model=AdminJobResponse)
async def get_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    return await admin_job_service.get_job(db, job_id)


@router.post("/admin/jobs/{job_id}/cancel", response_model=AdminJobResponse)
async def cancel_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """Cancelación cooperativa: el job se detiene en su próximo checkpoint."""
    return await admin_job_service.request_cancel(db, job_id)
