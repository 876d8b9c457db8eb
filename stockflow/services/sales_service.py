import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import (
    EmptyOrderError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockflow.core.id_utils import generate_dated_code
from stockflow.core.money import ZERO_MONEY, line_total, to_money
from stockflow.core.observability import log_event
from stockflow.core.time_utils import as_utc, utcnow
from stockflow.models.movement import MOVEMENT_SALE
from stockflow.models.product import Product
from stockflow.models.sales import Sale, SaleItem
from stockflow.services.audit_service import ACTION_CREATE, AuditRecorder, record_audit
from stockflow.services.code_service import run_with_generated_code
from stockflow.services.inventory_service import (
    DIRECTION_OUT,
    apply_aggregate_movement,
    require_positive_quantity,
)

logger = logging.getLogger("stockflow.ledger")


@dataclass(frozen=True)
class SaleLine:
    product_id: int
    qty: int
    selling_price: Decimal


@dataclass(frozen=True)
class SalesStats:
    monthly_revenue: Decimal
    monthly_transactions: int
    total_transactions: int


def sale_total(lines: list[SaleLine]) -> Decimal:
    total = ZERO_MONEY
    for line in lines:
        total += line_total(line.qty, line.selling_price)
    return to_money(total)


def _validate_lines(lines: list[SaleLine]) -> dict[int, int]:
    if not lines:
        raise EmptyOrderError()
    qty_by_product: dict[int, int] = {}
    for line in lines:
        require_positive_quantity(line.qty)
        if to_money(line.selling_price) < ZERO_MONEY:
            raise ValidationError("Selling price cannot be negative")
        qty_by_product[line.product_id] = qty_by_product.get(line.product_id, 0) + line.qty
    return qty_by_product


def _load_products(db: Session, product_ids: list[int]) -> dict[int, Product]:
    rows = db.execute(select(Product).where(Product.id.in_(product_ids))).scalars().all()
    return {product.id: product for product in rows}


def create_sale(
    db: Session,
    *,
    items: list[SaleLine],
    actor_id: str,
    customer_name: str | None = None,
    audit: AuditRecorder | None = None,
    now: datetime | None = None,
) -> Sale:
    qty_by_product = _validate_lines(items)

    # Advisory pass for a friendly error before any write; the conditional
    # decrements inside the transaction are what actually guard stock.
    products = _load_products(db, list(qty_by_product))
    for product_id, requested in qty_by_product.items():
        product = products.get(product_id)
        if not product:
            raise NotFoundError(f"Product #{product_id} not found")
        if product.current_stock < requested:
            raise InsufficientStockError(
                product_id=product.id,
                product_name=product.name,
                available=product.current_stock,
                requested=requested,
            )

    total = sale_total(items)
    sale_date = as_utc(now) or utcnow()
    customer = (customer_name or "").strip() or None

    def _create(invoice_code: str) -> Sale:
        sale = Sale(
            id=str(uuid.uuid4()),
            invoice_code=invoice_code,
            customer_name=customer,
            total_amount=total,
            sale_date=sale_date,
            created_by=actor_id,
        )
        db.add(sale)
        db.flush()
        for line in items:
            product = products[line.product_id]
            unit_price = to_money(line.selling_price)
            db.add(
                SaleItem(
                    sale_id=sale.id,
                    product_id=product.id,
                    qty=line.qty,
                    selling_price=unit_price,
                    cost_price=to_money(product.cost_price) if product.cost_price is not None else None,
                    line_total=line_total(line.qty, unit_price),
                )
            )
            apply_aggregate_movement(
                db,
                product=product,
                quantity=line.qty,
                direction=DIRECTION_OUT,
                movement_type=MOVEMENT_SALE,
                actor_id=actor_id,
                notes=f"Sale {invoice_code}",
                reference_id=sale.id,
            )
        return sale

    sale = run_with_generated_code(
        db,
        settings.invoice_code_prefix,
        _create,
        generate=lambda prefix: generate_dated_code(prefix, now=sale_date),
    )
    db.refresh(sale)
    log_event(
        logger,
        "sale_created",
        sale_id=sale.id,
        invoice_code=sale.invoice_code,
        items_count=len(items),
        total=str(total),
    )
    record_audit(
        audit,
        actor_id,
        ACTION_CREATE,
        "sale",
        sale.id,
        {
            "invoiceCode": sale.invoice_code,
            "itemCount": len(items),
            "totalAmount": total,
        },
    )
    return sale


def get_sale_or_404(db: Session, sale_id: str) -> Sale:
    sale = db.execute(select(Sale).where(Sale.id == sale_id)).scalar_one_or_none()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


def list_sale_items(db: Session, sale_id: str) -> list[tuple[SaleItem, str, str, str]]:
    rows = db.execute(
        select(SaleItem, Product.sku, Product.name, Product.unit)
        .join(Product, Product.id == SaleItem.product_id)
        .where(SaleItem.sale_id == sale_id)
        .order_by(SaleItem.id.asc())
    ).all()
    return [(item, sku, name, unit) for item, sku, name, unit in rows]


def sales_stats(db: Session, *, now: datetime | None = None) -> SalesStats:
    moment = as_utc(now) or utcnow()
    start_of_month = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    revenue, month_count = db.execute(
        select(func.coalesce(func.sum(Sale.total_amount), 0), func.count(Sale.id)).where(
            Sale.sale_date >= start_of_month
        )
    ).one()
    total_count = int(db.execute(select(func.count(Sale.id))).scalar_one())
    return SalesStats(
        monthly_revenue=to_money(revenue),
        monthly_transactions=int(month_count),
        total_transactions=total_count,
    )


def list_sales(
    db: Session,
    *,
    search: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[tuple[Sale, int]]]:
    filters = []
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Sale.invoice_code).like(pattern),
                func.lower(func.coalesce(Sale.customer_name, "")).like(pattern),
            )
        )
    if start is not None:
        filters.append(Sale.sale_date >= start)
    if end is not None:
        filters.append(Sale.sale_date <= end)

    item_counts = (
        select(SaleItem.sale_id, func.count(SaleItem.id).label("item_count"))
        .group_by(SaleItem.sale_id)
        .subquery()
    )
    total = int(db.execute(select(func.count(Sale.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Sale, func.coalesce(item_counts.c.item_count, 0))
        .outerjoin(item_counts, item_counts.c.sale_id == Sale.id)
        .where(*filters)
        .order_by(Sale.sale_date.desc(), Sale.id.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    return total, [(sale, int(count)) for sale, count in rows]
