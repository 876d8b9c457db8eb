from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.errors import NotFoundError
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.models.movement import Movement
from stockflow.models.product import Product
from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.movement import MovementOut
from stockflow.schemas.product import (
    ConsumeIn,
    ProductCreateIn,
    ProductDetailOut,
    ProductListOut,
    ProductLocationOut,
    ProductMovementOut,
    ProductOut,
    ProductUpdateIn,
    StockSetIn,
)
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.catalog_service import get_category_or_404
from stockflow.services.inventory_service import get_product_or_404
from stockflow.services.location_inventory_service import get_located_stock_total, list_product_location_rows
from stockflow.services.product_service import (
    ProductDraft,
    consume_stock,
    create_product,
    delete_product,
    list_products,
    recent_product_movements,
    set_product_stock,
    stock_status,
    update_product,
)
from stockflow.services.user_service import visible_category_ids

router = APIRouter(prefix="/products", tags=["products"])


def category_scope(db: Session, principal: Principal) -> list[int] | None:
    """Categories a principal may read products from; ``None`` means all."""
    if principal.is_admin:
        return None
    return visible_category_ids(db, principal.actor_id)


def _product_out(product: Product, category_name: str | None = None) -> ProductOut:
    return ProductOut(
        id=product.id,
        sku=product.sku,
        name=product.name,
        category_id=product.category_id,
        category_name=category_name,
        description=product.description,
        unit=product.unit,
        price=float(product.price or 0),
        cost_price=float(product.cost_price or 0),
        min_stock=product.min_stock,
        current_stock=product.current_stock,
        stock_status=stock_status(product.current_stock, product.min_stock),
        is_consumable=product.is_consumable,
        condition=product.condition,
        image=product.image,
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


def _movement_out(movement: Movement) -> ProductMovementOut:
    return ProductMovementOut(
        id=movement.id,
        type=movement.type,
        quantity=movement.quantity,
        from_location_id=movement.from_location_id,
        to_location_id=movement.to_location_id,
        notes=movement.notes,
        moved_by=movement.moved_by,
        created_at=movement.created_at,
    )


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products",
    description="Viewers only see products in the categories an admin made visible to them.",
    responses=error_responses(400, 401, 422, 500),
)
def list_products_endpoint(
    q: str | None = Query(default=None, description="Search by name or SKU"),
    category_id: int | None = Query(default=None),
    status: str | None = Query(default=None, description="LOW, IN_STOCK or OVER_STOCK"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    total, rows = list_products(
        db,
        visible_category_ids=category_scope(db, principal),
        category_id=category_id,
        status=status,
        search=q,
        limit=limit,
        offset=offset,
    )
    items = [_product_out(product, category_name) for product, category_name in rows]
    count = len(items)
    return ProductListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/{product_id}",
    response_model=ProductDetailOut,
    summary="Product detail",
    description="Includes the per-location breakdown, unlocated stock and the latest movements.",
    responses=error_responses(401, 404, 500),
)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    product = get_product_or_404(db, product_id)
    scope = category_scope(db, principal)
    if scope is not None and product.category_id not in scope:
        raise NotFoundError(f"Product #{product_id} not found")

    category = get_category_or_404(db, product.category_id)
    locations = [
        ProductLocationOut(location_id=location_id, location_name=name, location_type=kind, quantity=qty)
        for location_id, name, kind, qty in list_product_location_rows(db, product_id=product.id)
    ]
    base = _product_out(product, category.name)
    return ProductDetailOut(
        **base.model_dump(),
        locations=locations,
        unlocated_stock=product.current_stock - get_located_stock_total(db, product_id=product.id),
        recent_movements=[_movement_out(row) for row in recent_product_movements(db, product.id)],
    )


@router.post(
    "",
    response_model=ProductOut,
    status_code=201,
    summary="Create product",
    description="SKU is auto-allocated from the category prefix when omitted. Opening stock is recorded as an adjustment movement.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def create_product_endpoint(
    payload: ProductCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    product = create_product(
        db,
        draft=ProductDraft(**payload.model_dump()),
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _product_out(product)


@router.patch(
    "/{product_id}",
    response_model=ProductOut,
    summary="Update product",
    description="A changed `current_stock` is applied as an adjustment movement of the difference.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def update_product_endpoint(
    product_id: int,
    payload: ProductUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    product = update_product(
        db,
        product_id=product_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _product_out(product)


@router.put(
    "/{product_id}/stock",
    response_model=ProductOut,
    summary="Set on-hand stock",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def set_stock(
    product_id: int,
    payload: StockSetIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    product = set_product_stock(
        db,
        product_id=product_id,
        target=payload.current_stock,
        notes=payload.notes,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _product_out(product)


@router.post(
    "/{product_id}/consume",
    response_model=MovementOut,
    status_code=201,
    summary="Consume stock",
    description="Only for products flagged consumable.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def consume(
    product_id: int,
    payload: ConsumeIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    movement = consume_stock(
        db,
        product_id=product_id,
        qty=payload.qty,
        notes=payload.notes,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return MovementOut(
        id=movement.id,
        product_id=movement.product_id,
        quantity=movement.quantity,
        type=movement.type,
        reference_id=movement.reference_id,
        notes=movement.notes,
        moved_by=movement.moved_by,
        created_at=movement.created_at,
    )


@router.delete(
    "/{product_id}",
    status_code=204,
    summary="Delete product",
    description="Blocked while any movement, loan or sale references the product.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_product_endpoint(
    product_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    delete_product(db, product_id=product_id, actor_id=principal.actor_id, audit=audit)
    return Response(status_code=204)
