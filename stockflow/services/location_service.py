from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.errors import ConflictError, NotFoundError, ValidationError
from stockflow.db.transactions import run_in_transaction
from stockflow.models.location import LOCATION_PHYSICAL, LOCATION_TYPES, Location, ProductLocation
from stockflow.models.movement import Movement
from stockflow.models.product import Product
from stockflow.services.audit_service import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    AuditRecorder,
    record_audit,
)


@dataclass(frozen=True)
class LocationRow:
    location: Location
    total_quantity: int


def get_location_or_404(db: Session, location_id: int) -> Location:
    location = db.execute(select(Location).where(Location.id == location_id)).scalar_one_or_none()
    if not location:
        raise NotFoundError(f"Location #{location_id} not found")
    return location


def _normalize_type(value: str | None) -> str:
    kind = (value or LOCATION_PHYSICAL).strip().upper()
    if kind not in LOCATION_TYPES:
        raise ValidationError(f"Location type must be one of: {', '.join(LOCATION_TYPES)}")
    return kind


def _validate_parent(db: Session, *, location_id: int | None, kind: str, parent_id: int | None) -> None:
    """Parent must exist, share the child's type, and not close a cycle."""
    if parent_id is None:
        return
    if location_id is not None and parent_id == location_id:
        raise ValidationError("A location cannot be its own parent")
    parent = get_location_or_404(db, parent_id)
    if parent.type != kind:
        raise ValidationError(f"Parent location must also be {kind}")
    seen = {location_id} if location_id is not None else set()
    while parent.parent_id is not None:
        if parent.parent_id in seen:
            raise ValidationError("Location hierarchy cannot contain cycles")
        seen.add(parent.id)
        parent = get_location_or_404(db, parent.parent_id)


def list_locations(db: Session, *, kind: str | None = None) -> list[LocationRow]:
    totals = (
        select(ProductLocation.location_id, func.sum(ProductLocation.quantity).label("total_quantity"))
        .group_by(ProductLocation.location_id)
        .subquery()
    )
    stmt = select(Location, func.coalesce(totals.c.total_quantity, 0)).outerjoin(
        totals, totals.c.location_id == Location.id
    )
    if kind:
        stmt = stmt.where(Location.type == _normalize_type(kind))
    rows = db.execute(stmt.order_by(Location.type.asc(), Location.name.asc())).all()
    return [LocationRow(location=location, total_quantity=int(total)) for location, total in rows]


def list_location_stock(db: Session, location_id: int) -> list[tuple[int, str, str, int]]:
    rows = db.execute(
        select(Product.id, Product.sku, Product.name, ProductLocation.quantity)
        .join(Product, Product.id == ProductLocation.product_id)
        .where(ProductLocation.location_id == location_id, ProductLocation.quantity != 0)
        .order_by(Product.name.asc())
    ).all()
    return [(int(product_id), sku, name, int(qty)) for product_id, sku, name, qty in rows]


def create_location(
    db: Session,
    *,
    name: str,
    actor_id: str,
    kind: str | None = None,
    parent_id: int | None = None,
    description: str | None = None,
    audit: AuditRecorder | None = None,
) -> Location:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Location name is required")
    kind = _normalize_type(kind)
    _validate_parent(db, location_id=None, kind=kind, parent_id=parent_id)

    def _create() -> Location:
        location = Location(name=name, type=kind, parent_id=parent_id, description=description)
        db.add(location)
        db.flush()
        return location

    location = run_in_transaction(db, _create)
    db.refresh(location)
    record_audit(audit, actor_id, ACTION_CREATE, "location", location.id, {"name": name, "type": kind})
    return location


def update_location(
    db: Session,
    *,
    location_id: int,
    changes: dict[str, Any],
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> Location:
    location = get_location_or_404(db, location_id)
    changes = dict(changes)
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValidationError("Location name is required")
    kind = _normalize_type(changes["type"]) if changes.get("type") else location.type
    if "type" in changes:
        changes["type"] = kind
    parent_id = changes["parent_id"] if "parent_id" in changes else location.parent_id
    _validate_parent(db, location_id=location.id, kind=kind, parent_id=parent_id)
    if kind != location.type:
        mismatched = db.execute(
            select(func.count(Location.id)).where(Location.parent_id == location.id, Location.type != kind)
        ).scalar_one()
        if mismatched:
            raise ValidationError(f"Child locations must also be {kind}")

    def _update() -> None:
        for field in ("name", "type", "parent_id", "description"):
            if field in changes:
                setattr(location, field, changes[field])
        db.flush()

    run_in_transaction(db, _update)
    db.refresh(location)
    record_audit(audit, actor_id, ACTION_UPDATE, "location", location.id, changes)
    return location


def delete_location(db: Session, *, location_id: int, actor_id: str, audit: AuditRecorder | None = None) -> None:
    location = get_location_or_404(db, location_id)
    children = int(db.execute(select(func.count(Location.id)).where(Location.parent_id == location_id)).scalar_one())
    if children:
        raise ConflictError(f"Cannot delete location with {children} child locations")
    stocked = int(
        db.execute(
            select(func.count(ProductLocation.id)).where(
                ProductLocation.location_id == location_id,
                ProductLocation.quantity != 0,
            )
        ).scalar_one()
    )
    if stocked:
        raise ConflictError(f"Cannot delete location holding stock for {stocked} products")
    moved = int(
        db.execute(
            select(func.count(Movement.id)).where(
                or_(Movement.from_location_id == location_id, Movement.to_location_id == location_id)
            )
        ).scalar_one()
    )
    if moved:
        # Movements are immutable history and keep their location references.
        raise ConflictError(f"Cannot delete location referenced by {moved} movements")
    name = location.name

    def _delete() -> None:
        for row in db.execute(
            select(ProductLocation).where(ProductLocation.location_id == location_id)
        ).scalars():
            db.delete(row)
        db.delete(location)

    run_in_transaction(db, _delete)
    record_audit(audit, actor_id, ACTION_DELETE, "location", location_id, {"name": name})
