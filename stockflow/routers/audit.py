from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_admin
from stockflow.core.security_current import Principal
from stockflow.models.audit_log import AuditTrail
from stockflow.routers.movements import day_bounds
from stockflow.schemas.audit import AuditLogListOut, AuditLogOut
from stockflow.schemas.common import PaginationMeta
from stockflow.services.audit_service import list_audit_entries

router = APIRouter(prefix="/audit-logs", tags=["audit"])


def _audit_out(row: AuditTrail) -> AuditLogOut:
    return AuditLogOut(
        id=row.id,
        actor_user_id=row.actor_user_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        details=row.details,
        ip_address=row.ip_address,
        created_at=row.created_at,
    )


@router.get(
    "",
    response_model=AuditLogListOut,
    summary="List audit logs",
    description="Who changed what in the ledger. Entries are best-effort and written after the change commits.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_audit_logs(
    actor_user_id: str | None = Query(default=None),
    action: str | None = Query(default=None, description="CREATE, UPDATE, DELETE, MOVE, NOTIFY or SWEEP"),
    entity_type: str | None = Query(default=None, description="e.g. product, movement, loan, sale"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    start, end = day_bounds(start_date, end_date)
    total, rows = list_audit_entries(
        db,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    items = [_audit_out(row) for row in rows]
    count = len(items)
    return AuditLogListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
