from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.models.location import Location
from stockflow.schemas.location import (
    LocationCreateIn,
    LocationDetailOut,
    LocationListOut,
    LocationOut,
    LocationStockOut,
    LocationUpdateIn,
)
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.location_service import (
    create_location,
    delete_location,
    get_location_or_404,
    list_location_stock,
    list_locations,
    update_location,
)

router = APIRouter(prefix="/locations", tags=["locations"])


def _location_out(location: Location, total_quantity: int = 0) -> LocationOut:
    return LocationOut(
        id=location.id,
        name=location.name,
        type=location.type,
        parent_id=location.parent_id,
        description=location.description,
        total_quantity=total_quantity,
        created_at=location.created_at,
        updated_at=location.updated_at,
    )


@router.get(
    "",
    response_model=LocationListOut,
    summary="List locations",
    responses=error_responses(400, 401, 422, 500),
)
def list_locations_endpoint(
    type: str | None = Query(default=None, description="PHYSICAL or VIRTUAL"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    return LocationListOut(items=[_location_out(row.location, row.total_quantity) for row in list_locations(db, kind=type)])


@router.get(
    "/{location_id}",
    response_model=LocationDetailOut,
    summary="Location detail",
    responses=error_responses(401, 404, 500),
)
def get_location(
    location_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    location = get_location_or_404(db, location_id)
    stock = [
        LocationStockOut(product_id=product_id, sku=sku, name=name, quantity=qty)
        for product_id, sku, name, qty in list_location_stock(db, location.id)
    ]
    base = _location_out(location, sum(row.quantity for row in stock))
    return LocationDetailOut(**base.model_dump(), stock=stock)


@router.post(
    "",
    response_model=LocationOut,
    status_code=201,
    summary="Create location",
    description="A parent location must exist and have the same type.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_location_endpoint(
    payload: LocationCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    location = create_location(
        db,
        name=payload.name,
        kind=payload.type,
        parent_id=payload.parent_id,
        description=payload.description,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _location_out(location)


@router.patch(
    "/{location_id}",
    response_model=LocationOut,
    summary="Update location",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_location_endpoint(
    location_id: int,
    payload: LocationUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    location = update_location(
        db,
        location_id=location_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _location_out(location)


@router.delete(
    "/{location_id}",
    status_code=204,
    summary="Delete location",
    description="Blocked while the location has child locations, holds stock, or is referenced by movements.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_location_endpoint(
    location_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    delete_location(db, location_id=location_id, actor_id=principal.actor_id, audit=audit)
    return Response(status_code=204)
