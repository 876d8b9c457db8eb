"""
Movement engine: the single write path for product stock.

Every change to ``Product.current_stock`` or to ``ProductLocation`` rows goes
through :func:`apply_movement` or :func:`apply_aggregate_movement`, which
append the matching :class:`Movement` row in the same transaction. Neither
function commits; :func:`record_movement` wraps a manual movement in its own
transaction and audits it after commit.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased

from stockflow.core.config import settings
from stockflow.core.errors import InsufficientStockError, NotFoundError, ValidationError
from stockflow.core.observability import log_event
from stockflow.db.transactions import run_in_transaction
from stockflow.models.location import Location
from stockflow.models.movement import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_STOCK_IN,
    MOVEMENT_STOCK_OUT,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
    Movement,
)
from stockflow.models.product import Product
from stockflow.services.audit_service import ACTION_MOVE, AuditRecorder, record_audit
from stockflow.services.location_inventory_service import upsert_product_location

logger = logging.getLogger("stockflow.ledger")

DIRECTION_IN = "in"
DIRECTION_OUT = "out"


def classify_movement(from_location_id: int | None, to_location_id: int | None) -> str:
    if from_location_id and to_location_id:
        return MOVEMENT_TRANSFER
    if to_location_id:
        return MOVEMENT_STOCK_IN
    if from_location_id:
        return MOVEMENT_STOCK_OUT
    return MOVEMENT_ADJUSTMENT


def aggregate_delta(from_location_id: int | None, to_location_id: int | None, quantity: int) -> int:
    """Change to ``current_stock`` implied by a location pair (0 for transfers and adjustments)."""
    if to_location_id and not from_location_id:
        return quantity
    if from_location_id and not to_location_id:
        return -quantity
    return 0


def require_positive_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive whole number")


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product:
        raise NotFoundError(f"Product #{product_id} not found")
    return product


def _ensure_locations_exist(db: Session, location_ids: list[int]) -> None:
    if not location_ids:
        return
    found = set(
        db.execute(select(Location.id).where(Location.id.in_(location_ids))).scalars().all()
    )
    for location_id in location_ids:
        if location_id not in found:
            raise NotFoundError(f"Location #{location_id} not found")


def get_current_stock(db: Session, product_id: int) -> int | None:
    stock = db.execute(
        select(Product.current_stock).where(Product.id == product_id)
    ).scalar_one_or_none()
    return int(stock) if stock is not None else None


def increment_product_stock(db: Session, *, product: Product, quantity: int) -> None:
    result = db.execute(
        update(Product)
        .where(Product.id == product.id)
        .values(current_stock=Product.current_stock + quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product #{product.id} not found")
    db.expire(product, ["current_stock", "updated_at"])


def decrement_product_stock(db: Session, *, product: Product, quantity: int) -> None:
    """Decrement only if enough stock remains; the check and write are one statement."""
    result = db.execute(
        update(Product)
        .where(Product.id == product.id, Product.current_stock >= quantity)
        .values(current_stock=Product.current_stock - quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        available = get_current_stock(db, product.id)
        if available is None:
            raise NotFoundError(f"Product #{product.id} not found")
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=available,
            requested=quantity,
        )
    db.expire(product, ["current_stock", "updated_at"])


def apply_movement(
    db: Session,
    *,
    product_id: int,
    from_location_id: int | None,
    to_location_id: int | None,
    quantity: int,
    actor_id: str,
    notes: str | None = None,
    movement_type: str | None = None,
    reference_id: str | None = None,
) -> Movement:
    """
    Append a location movement and apply it inside the caller's transaction.

    Incoming (``to`` only) raises aggregate stock, outgoing (``from`` only)
    lowers it, and a transfer (both) only reallocates between locations.
    """
    require_positive_quantity(quantity)
    if not from_location_id and not to_location_id:
        raise ValidationError("A movement needs a source or a destination location")
    if from_location_id and from_location_id == to_location_id:
        raise ValidationError("Source and destination locations must differ")

    kind = movement_type or classify_movement(from_location_id, to_location_id)
    if kind not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type '{kind}'")

    product = get_product_or_404(db, product_id)
    _ensure_locations_exist(db, [loc for loc in (from_location_id, to_location_id) if loc])

    movement = Movement(
        product_id=product.id,
        from_location_id=from_location_id or None,
        to_location_id=to_location_id or None,
        quantity=quantity,
        type=kind,
        reference_id=reference_id,
        notes=notes,
        moved_by=actor_id,
    )
    db.add(movement)
    db.flush()

    if from_location_id:
        upsert_product_location(db, product_id=product.id, location_id=from_location_id, qty_delta=-quantity)
    if to_location_id:
        upsert_product_location(db, product_id=product.id, location_id=to_location_id, qty_delta=quantity)

    delta = aggregate_delta(from_location_id, to_location_id, quantity)
    if delta > 0:
        increment_product_stock(db, product=product, quantity=delta)
    elif delta < 0:
        decrement_product_stock(db, product=product, quantity=-delta)
    return movement


def apply_aggregate_movement(
    db: Session,
    *,
    product: Product,
    quantity: int,
    direction: str,
    movement_type: str,
    actor_id: str,
    notes: str | None = None,
    reference_id: str | None = None,
) -> Movement:
    """
    Append a location-less movement and adjust only the aggregate stock.

    Used by loans, sales, consumption and direct stock edits, which do not
    track which location the stock left from or returned to.
    """
    require_positive_quantity(quantity)
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValidationError(f"Unknown movement direction '{direction}'")
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type '{movement_type}'")

    if direction == DIRECTION_OUT:
        decrement_product_stock(db, product=product, quantity=quantity)
    else:
        increment_product_stock(db, product=product, quantity=quantity)

    movement = Movement(
        product_id=product.id,
        from_location_id=None,
        to_location_id=None,
        quantity=quantity,
        type=movement_type,
        reference_id=reference_id,
        notes=notes,
        moved_by=actor_id,
    )
    db.add(movement)
    db.flush()
    return movement


def record_movement(
    db: Session,
    *,
    product_id: int,
    from_location_id: int | None,
    to_location_id: int | None,
    quantity: int,
    actor_id: str,
    notes: str | None = None,
    audit: AuditRecorder | None = None,
) -> Movement:
    require_positive_quantity(quantity)

    movement = run_in_transaction(
        db,
        lambda: apply_movement(
            db,
            product_id=product_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=quantity,
            actor_id=actor_id,
            notes=notes,
        ),
    )
    db.refresh(movement)
    log_event(
        logger,
        "movement_recorded",
        movement_id=movement.id,
        product_id=product_id,
        type=movement.type,
        quantity=quantity,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
    )
    record_audit(
        audit,
        actor_id,
        ACTION_MOVE,
        "movement",
        movement.id,
        {
            "productId": product_id,
            "from": from_location_id,
            "to": to_location_id,
            "quantity": quantity,
            "type": movement.type,
        },
    )
    return movement


def list_movements(
    db: Session,
    *,
    product_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[tuple[Movement, str | None, str | None, str | None]]:
    """Newest-first movements with product and location names, capped at ``movement_list_limit``."""
    cap = min(limit or settings.movement_list_limit, settings.movement_list_limit)
    from_location = aliased(Location)
    to_location = aliased(Location)
    stmt = (
        select(Movement, Product.name, from_location.name, to_location.name)
        .join(Product, Product.id == Movement.product_id)
        .outerjoin(from_location, from_location.id == Movement.from_location_id)
        .outerjoin(to_location, to_location.id == Movement.to_location_id)
    )
    if product_id is not None:
        stmt = stmt.where(Movement.product_id == product_id)
    if start is not None:
        stmt = stmt.where(Movement.created_at >= start)
    if end is not None:
        stmt = stmt.where(Movement.created_at <= end)
    rows = db.execute(stmt.order_by(Movement.created_at.desc(), Movement.id.desc()).limit(cap)).all()
    return [tuple(row) for row in rows]
