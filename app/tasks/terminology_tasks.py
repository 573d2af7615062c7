"""
Tareas Celery para jobs administrativos: recarga NAMASTE, sincronización
CIE-11 y generación automática de mapeos.

Cada tarea recibe el id de un AdminJob ya creado (QUEUED) y delega en
admin_job_service.run_job, que registra el estado final.
"""

import asyncio
import logging

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run(job_id: str, body) -> None:
    from uuid import UUID

    async def _process():
        from app.database import async_session_factory, engine
        from app.services import admin_job_service

        try:
            async with async_session_factory() as db:
                await admin_job_service.run_job(db, UUID(job_id), body)
        finally:
            # Cada asyncio.run usa un loop nuevo: no reutilizar conexiones del pool
            await engine.dispose()

    asyncio.run(_process())


@celery_app.task(name="terminology.reload_namaste")
def reload_namaste_task(job_id: str, csv_path: str | None = None):
    """Recarga el vocabulario NAMASTE desde el CSV configurado."""
    from app.services import ingestion_service

    async def body(db, job):
        return await ingestion_service.reload_namaste(db, job, csv_path)

    _run(job_id, body)


@celery_app.task(name="terminology.sync_icd11")
def sync_icd11_task(job_id: str):
    """Sincroniza TM2 y Biomedicina desde la API de la OMS."""
    from app.services import icd11_sync_service

    async def body(db, job):
        return await icd11_sync_service.sync_icd11(db, job)

    _run(job_id, body)


@celery_app.task(name="terminology.generate_mappings")
def generate_mappings_task(job_id: str, csv_path: str | None = None):
    """Genera mapeos automáticos a partir de las sugerencias del CSV NAMASTE."""
    from app.services import ingestion_service

    async def body(db, job):
        return await ingestion_service.generate_automatic_mappings(db, job, csv_path)

    _run(job_id, body)
