"""
Schemas del registro de auditoría.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class AuditLogItem(BaseModel):
    """Un registro individual del audit log."""
    id: UUID
    entity: str
    entity_id: str
    action: str
    old_data: dict | None = None
    new_data: dict | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    """Respuesta paginada del audit log (páginas desde 0)."""
    items: list[AuditLogItem]
    total: int
    page: int
    size: int
    pages: int
