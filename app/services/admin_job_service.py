"""
Jobs administrativos: creación, encolado, estado y cancelación cooperativa.

Los endpoints solo crean el registro (QUEUED) y encolan la tarea Celery; el
cuerpo del job corre en el worker vía `run_job`, que registra la transición
RUNNING → SUCCEEDED / FAILED / CANCELLED en admin_jobs.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException
from kombu.exceptions import OperationalError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DependencyException, NotFoundException
from app.models.admin_job import AdminJob, JobStatus, JobType
from app.services import audit_service

logger = logging.getLogger(__name__)

JobBody = Callable[[AsyncSession, AdminJob], Awaitable[dict]]


class JobCancelled(Exception):
    """Se pidió cancelar el job; se detiene en el checkpoint actual."""


# ── Triggers ─────────────────────────────────────────


async def create_job(db: AsyncSession, job_type: JobType) -> AdminJob:
    job = AdminJob(job_type=job_type, status=JobStatus.QUEUED, result={})
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info(f"Job {job.job_type.value} {job.id} encolado")
    return job


async def enqueue_job(db: AsyncSession, job: AdminJob) -> None:
    """
    Envía el job al worker Celery correspondiente a su tipo.
    Si el broker no responde, el job queda en FAILED y se lanza
    DependencyException.
    """
    from app.tasks import terminology_tasks

    tasks = {
        JobType.GENERATE_MAPPINGS: terminology_tasks.generate_mappings_task,
        JobType.RELOAD_NAMASTE: terminology_tasks.reload_namaste_task,
        JobType.SYNC_ICD11: terminology_tasks.sync_icd11_task,
    }
    try:
        tasks[job.job_type].delay(str(job.id))
    except (OperationalError, OSError) as exc:
        logger.error(f"No se pudo encolar el job {job.id}: {exc}")
        detail = f"Broker de tareas no disponible: {exc}"
        await _finish(db, job.id, JobStatus.FAILED, error_message=detail[:2000])
        raise DependencyException(detail)


# ── Consultas ────────────────────────────────────────


async def get_job(db: AsyncSession, job_id: UUID) -> AdminJob:
    job = await db.get(AdminJob, job_id)
    if job is None:
        raise NotFoundException("Job")
    return job


async def list_jobs(
    db: AsyncSession,
    job_type: JobType | None = None,
    limit: int = 20,
) -> list[AdminJob]:
    stmt = select(AdminJob)
    if job_type is not None:
        stmt = stmt.where(AdminJob.job_type == job_type)
    result = await db.execute(stmt.order_by(AdminJob.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def request_cancel(db: AsyncSession, job_id: UUID) -> AdminJob:
    """
    Marca cancel_requested. Un job aún en cola pasa directo a CANCELLED;
    uno en ejecución se detiene en su próximo checkpoint. Los jobs
    terminados no cambian.
    """
    job = await get_job(db, job_id)
    if job.status.is_finished:
        return job

    job.cancel_requested = True
    if job.status == JobStatus.QUEUED:
        job.status = JobStatus.CANCELLED
        job.finished_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(job)
    logger.info(f"Cancelación solicitada para job {job_id} [{job.status.value}]")
    return job


# ── Ejecución (worker) ───────────────────────────────


async def checkpoint(db: AsyncSession, job: AdminJob, progress: dict | None = None) -> None:
    """Confirma el avance y lanza JobCancelled si se pidió cancelar."""
    if progress is not None:
        job.result = dict(progress)
    await db.commit()
    await db.refresh(job, ["cancel_requested"])
    if job.cancel_requested:
        raise JobCancelled()


async def _finish(
    db: AsyncSession,
    job_id: UUID,
    status: JobStatus,
    *,
    result: dict | None = None,
    error_message: str | None = None,
) -> AdminJob:
    job = await get_job(db, job_id)
    job.status = status
    job.finished_at = datetime.now(timezone.utc)
    if result is not None:
        job.result = result
    job.error_message = error_message
    await audit_service.log_action(
        db,
        entity="admin_job",
        entity_id=str(job_id),
        action=f"job_{status.value}",
        new_data={"job_type": job.job_type, "result": job.result, "error": error_message},
    )
    await db.commit()
    await db.refresh(job)
    return job


async def run_job(db: AsyncSession, job_id: UUID, body: JobBody) -> AdminJob | None:
    """
    Ejecuta el cuerpo de un job y registra su estado final.
    Solo los jobs en QUEUED se ejecutan; el resto se omite.
    """
    job = await db.get(AdminJob, job_id)
    if job is None:
        logger.error(f"AdminJob {job_id} no encontrado")
        return None
    if job.status != JobStatus.QUEUED:
        logger.info(f"AdminJob {job_id} ya está en estado {job.status.value}, omitiendo")
        return job

    job.status = JobStatus.RUNNING
    job.started_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info(f"Job {job.job_type.value} {job_id} iniciado")

    try:
        result = await body(db, job)
    except JobCancelled:
        await db.rollback()
        logger.info(f"Job {job_id} cancelado")
        return await _finish(db, job_id, JobStatus.CANCELLED)
    except HTTPException as exc:
        await db.rollback()
        logger.error(f"Job {job_id} falló: {exc.detail}")
        return await _finish(db, job_id, JobStatus.FAILED, error_message=str(exc.detail))
    except Exception as exc:
        await db.rollback()
        logger.exception(f"Job {job_id} falló con error inesperado")
        return await _finish(db, job_id, JobStatus.FAILED, error_message=str(exc)[:2000])

    finished = await _finish(db, job_id, JobStatus.SUCCEEDED, result=result)
    logger.info(f"Job {job.job_type.value} {job_id} completado: {result}")
    return finished
