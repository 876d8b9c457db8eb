from datetime import datetime
from typing import Any

from pydantic import BaseModel

from stockflow.schemas.common import PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_user_id: str | None = None
    action: str
    entity_type: str
    entity_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime


class AuditLogListOut(BaseModel):
    items: list[AuditLogOut]
    pagination: PaginationMeta
