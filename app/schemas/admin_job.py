"""
Schemas para jobs administrativos en background.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from app.models.admin_job import JobStatus, JobType


class AdminJobResponse(BaseModel):
    id: UUID
    job_type: JobType
    status: JobStatus
    cancel_requested: bool
    result: dict | None = None
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None

    model_config = {"from_attributes": True}


class AdminJobAccepted(BaseModel):
    """Acuse de un trigger administrativo: el job queda encolado."""
    job_id: UUID
    job_type: JobType
    status: JobStatus
    message: str
