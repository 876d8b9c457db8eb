from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.errors import ValidationError
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.models.movement import Movement
from stockflow.schemas.movement import MovementCreateIn, MovementListOut, MovementOut
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.inventory_service import list_movements, record_movement

router = APIRouter(prefix="/movements", tags=["movements"])


def day_bounds(start_date: date | None, end_date: date | None) -> tuple[datetime | None, datetime | None]:
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date")
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None
    return start, end


def _movement_out(
    movement: Movement,
    product_name: str | None = None,
    from_name: str | None = None,
    to_name: str | None = None,
) -> MovementOut:
    return MovementOut(
        id=movement.id,
        product_id=movement.product_id,
        product_name=product_name,
        from_location_id=movement.from_location_id,
        from_location_name=from_name,
        to_location_id=movement.to_location_id,
        to_location_name=to_name,
        quantity=movement.quantity,
        type=movement.type,
        reference_id=movement.reference_id,
        notes=movement.notes,
        moved_by=movement.moved_by,
        created_at=movement.created_at,
    )


@router.post(
    "",
    response_model=MovementOut,
    status_code=201,
    summary="Record movement",
    description=(
        "`to` only is a stock-in, `from` only a stock-out, and both a transfer that leaves "
        "aggregate stock unchanged."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def create_movement(
    payload: MovementCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    movement = record_movement(
        db,
        product_id=payload.product_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
        notes=payload.notes,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _movement_out(movement)


@router.get(
    "",
    response_model=MovementListOut,
    summary="List movements",
    description="Newest first, at most 100 rows.",
    responses=error_responses(400, 401, 422, 500),
)
def list_movements_endpoint(
    product_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    start, end = day_bounds(start_date, end_date)
    rows = list_movements(db, product_id=product_id, start=start, end=end)
    return MovementListOut(items=[_movement_out(*row) for row in rows])
