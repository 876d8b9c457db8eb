import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import ConflictError, NotFoundError, ValidationError
from stockflow.core.money import to_money
from stockflow.core.observability import log_event
from stockflow.db.transactions import run_in_transaction
from stockflow.models.category import Category
from stockflow.models.loan import Loan
from stockflow.models.location import ProductLocation
from stockflow.models.movement import MOVEMENT_ADJUSTMENT, MOVEMENT_CONSUMPTION, Movement
from stockflow.models.product import Product
from stockflow.models.sales import SaleItem
from stockflow.services.audit_service import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_MOVE,
    ACTION_UPDATE,
    AuditRecorder,
    record_audit,
)
from stockflow.services.inventory_service import (
    DIRECTION_IN,
    DIRECTION_OUT,
    apply_aggregate_movement,
    get_product_or_404,
    require_positive_quantity,
)
from stockflow.services.sku_service import next_sku

logger = logging.getLogger("stockflow.ledger")

STOCK_LOW = "LOW"
STOCK_IN_STOCK = "IN_STOCK"
STOCK_OVER_STOCK = "OVER_STOCK"

_EDITABLE_FIELDS = (
    "sku",
    "name",
    "category_id",
    "description",
    "unit",
    "price",
    "cost_price",
    "min_stock",
    "is_consumable",
    "condition",
    "image",
)
_NULLABLE_FIELDS = ("description", "condition", "image")


def stock_status(current_stock: int, min_stock: int) -> str:
    if current_stock < min_stock:
        return STOCK_LOW
    if current_stock > 2 * min_stock:
        return STOCK_OVER_STOCK
    return STOCK_IN_STOCK


@dataclass
class ProductDraft:
    name: str
    category_id: int
    unit: str = "pcs"
    sku: str | None = None
    description: str | None = None
    price: Decimal = Decimal("0")
    cost_price: Decimal = Decimal("0")
    min_stock: int = 0
    current_stock: int = 0
    is_consumable: bool = False
    condition: str | None = None
    image: str | None = None


def _ensure_category(db: Session, category_id: int) -> Category:
    category = db.execute(select(Category).where(Category.id == category_id)).scalar_one_or_none()
    if not category:
        raise NotFoundError("Category not found")
    return category


def _sku_taken(db: Session, sku: str, *, exclude_product_id: int | None = None) -> bool:
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_product_id is not None:
        stmt = stmt.where(Product.id != exclude_product_id)
    return db.execute(stmt).scalar_one_or_none() is not None


def create_product(
    db: Session,
    *,
    draft: ProductDraft,
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> Product:
    name = (draft.name or "").strip()
    if not name:
        raise ValidationError("Product name is required")
    if draft.min_stock < 0:
        raise ValidationError("Minimum stock cannot be negative")
    if draft.current_stock < 0:
        raise ValidationError("Opening stock cannot be negative")
    _ensure_category(db, draft.category_id)

    requested_sku = (draft.sku or "").strip().upper() or None
    if requested_sku and _sku_taken(db, requested_sku):
        raise ConflictError(f"SKU {requested_sku} already exists")

    # An auto-allocated SKU may race another create; retry once with a fresh one.
    attempts = 1 if requested_sku else settings.code_generation_attempts
    for attempt in range(1, attempts + 1):
        sku = requested_sku or next_sku(db, draft.category_id)

        def _create() -> Product:
            product = Product(
                sku=sku,
                name=name,
                category_id=draft.category_id,
                description=draft.description,
                unit=(draft.unit or "pcs").strip(),
                price=to_money(draft.price or 0),
                cost_price=to_money(draft.cost_price or 0),
                min_stock=draft.min_stock,
                current_stock=0,
                is_consumable=draft.is_consumable,
                condition=draft.condition,
                image=draft.image,
                created_by=actor_id,
            )
            db.add(product)
            db.flush()
            if draft.current_stock > 0:
                apply_aggregate_movement(
                    db,
                    product=product,
                    quantity=draft.current_stock,
                    direction=DIRECTION_IN,
                    movement_type=MOVEMENT_ADJUSTMENT,
                    actor_id=actor_id,
                    notes="Opening balance",
                )
            return product

        try:
            product = run_in_transaction(db, _create, conflict_message=f"SKU {sku} already exists")
            break
        except ConflictError:
            if attempt >= attempts:
                raise
            log_event(logger, "sku_collision", level=logging.WARNING, sku=sku, attempt=attempt)

    db.refresh(product)
    record_audit(audit, actor_id, ACTION_CREATE, "product", product.id, {"sku": product.sku, "name": product.name})
    return product


def _apply_stock_target(db: Session, *, product: Product, target: int, actor_id: str, notes: str | None) -> int:
    if target < 0:
        raise ValidationError("Stock cannot be negative")
    # Row lock so the delta is computed against the value being overwritten.
    db.refresh(product, ["current_stock"], with_for_update=True)
    delta = target - product.current_stock
    if delta == 0:
        return 0
    apply_aggregate_movement(
        db,
        product=product,
        quantity=abs(delta),
        direction=DIRECTION_IN if delta > 0 else DIRECTION_OUT,
        movement_type=MOVEMENT_ADJUSTMENT,
        actor_id=actor_id,
        notes=notes or f"Stock set to {target}",
    )
    return delta


def set_product_stock(
    db: Session,
    *,
    product_id: int,
    target: int,
    actor_id: str,
    notes: str | None = None,
    audit: AuditRecorder | None = None,
) -> Product:
    """Direct stock edit, recorded as an adjustment movement of the difference."""
    if target < 0:
        raise ValidationError("Stock cannot be negative")
    product = get_product_or_404(db, product_id)

    delta = run_in_transaction(
        db,
        lambda: _apply_stock_target(db, product=product, target=target, actor_id=actor_id, notes=notes),
    )
    db.refresh(product)
    if delta:
        record_audit(
            audit,
            actor_id,
            ACTION_MOVE,
            "product",
            product.id,
            {"type": MOVEMENT_ADJUSTMENT, "delta": delta, "currentStock": product.current_stock},
        )
    return product


def update_product(
    db: Session,
    *,
    product_id: int,
    changes: dict[str, Any],
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> Product:
    product = get_product_or_404(db, product_id)
    unknown = set(changes) - set(_EDITABLE_FIELDS) - {"current_stock"}
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    changes = {field: value for field, value in changes.items() if value is not None or field in _NULLABLE_FIELDS}

    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Product name is required")
    if "sku" in changes:
        sku = (changes["sku"] or "").strip().upper()
        if not sku:
            raise ValidationError("SKU cannot be empty")
        if _sku_taken(db, sku, exclude_product_id=product.id):
            raise ConflictError(f"SKU {sku} already exists")
        changes = {**changes, "sku": sku}
    if "category_id" in changes:
        _ensure_category(db, changes["category_id"])
    if changes.get("min_stock") is not None and changes["min_stock"] < 0:
        raise ValidationError("Minimum stock cannot be negative")
    target_stock = changes.get("current_stock")
    if target_stock is not None and target_stock < 0:
        raise ValidationError("Stock cannot be negative")

    def _update() -> None:
        for field in _EDITABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field in ("price", "cost_price") and value is not None:
                value = to_money(value)
            setattr(product, field, value)
        db.flush()
        if target_stock is not None:
            _apply_stock_target(db, product=product, target=target_stock, actor_id=actor_id, notes=None)

    run_in_transaction(db, _update, conflict_message="SKU already exists")
    db.refresh(product)
    record_audit(audit, actor_id, ACTION_UPDATE, "product", product.id, changes)
    return product


def consume_stock(
    db: Session,
    *,
    product_id: int,
    qty: int,
    actor_id: str,
    notes: str | None = None,
    audit: AuditRecorder | None = None,
) -> Movement:
    require_positive_quantity(qty)
    product = get_product_or_404(db, product_id)
    if not product.is_consumable:
        raise ValidationError(f'"{product.name}" is not a consumable product')

    movement = run_in_transaction(
        db,
        lambda: apply_aggregate_movement(
            db,
            product=product,
            quantity=qty,
            direction=DIRECTION_OUT,
            movement_type=MOVEMENT_CONSUMPTION,
            actor_id=actor_id,
            notes=notes,
        ),
    )
    db.refresh(movement)
    record_audit(
        audit,
        actor_id,
        ACTION_MOVE,
        "movement",
        movement.id,
        {"productId": product_id, "quantity": qty, "type": MOVEMENT_CONSUMPTION},
    )
    return movement


def product_history_count(db: Session, product_id: int) -> dict[str, int]:
    return {
        "movements": int(
            db.execute(select(func.count(Movement.id)).where(Movement.product_id == product_id)).scalar_one()
        ),
        "loans": int(db.execute(select(func.count(Loan.id)).where(Loan.product_id == product_id)).scalar_one()),
        "sale_items": int(
            db.execute(select(func.count(SaleItem.id)).where(SaleItem.product_id == product_id)).scalar_one()
        ),
    }


def delete_product(
    db: Session,
    *,
    product_id: int,
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> None:
    """Delete a product that has no ledger history; historical rows are never cascaded."""
    product = get_product_or_404(db, product_id)
    history = product_history_count(db, product_id)
    if any(history.values()):
        raise ConflictError(
            "Cannot delete product with stock history "
            f"({history['movements']} movements, {history['loans']} loans, {history['sale_items']} sale items)"
        )
    sku, name = product.sku, product.name

    def _delete() -> None:
        db.execute(delete(ProductLocation).where(ProductLocation.product_id == product_id))
        db.delete(product)

    run_in_transaction(db, _delete)
    record_audit(audit, actor_id, ACTION_DELETE, "product", product_id, {"sku": sku, "name": name})


def _status_clause(status: str):
    if status == STOCK_LOW:
        return Product.current_stock < Product.min_stock
    if status == STOCK_OVER_STOCK:
        return Product.current_stock > 2 * Product.min_stock
    if status == STOCK_IN_STOCK:
        return and_(Product.current_stock >= Product.min_stock, Product.current_stock <= 2 * Product.min_stock)
    raise ValidationError(f"Unknown stock status '{status}'")


def list_products(
    db: Session,
    *,
    visible_category_ids: list[int] | None = None,
    category_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[tuple[Product, str | None]]]:
    """
    Page of products with their category name.

    ``visible_category_ids`` of ``None`` means unrestricted; an empty list
    matches nothing.
    """
    filters = []
    if visible_category_ids is not None:
        if not visible_category_ids:
            return 0, []
        filters.append(Product.category_id.in_(visible_category_ids))
    if category_id is not None:
        filters.append(Product.category_id == category_id)
    if status:
        filters.append(_status_clause(status.strip().upper()))
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))

    total = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product, Category.name)
        .outerjoin(Category, Category.id == Product.category_id)
        .where(*filters)
        .order_by(Product.name.asc(), Product.id.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    return total, [(product, category_name) for product, category_name in rows]


def recent_product_movements(db: Session, product_id: int, *, limit: int | None = None) -> list[Movement]:
    return list(
        db.execute(
            select(Movement)
            .where(Movement.product_id == product_id)
            .order_by(Movement.created_at.desc(), Movement.id.desc())
            .limit(limit or settings.product_history_limit)
        ).scalars().all()
    )
