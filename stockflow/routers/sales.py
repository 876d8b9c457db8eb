from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.models.sales import Sale
from stockflow.routers.movements import day_bounds
from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.sales import (
    SaleCreateIn,
    SaleDetailOut,
    SaleItemOut,
    SaleListOut,
    SaleOut,
    SalesStatsOut,
)
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.sales_service import (
    SaleLine,
    create_sale,
    get_sale_or_404,
    list_sale_items,
    list_sales,
    sales_stats,
)

router = APIRouter(prefix="/sales", tags=["sales"])


def _sale_out(sale: Sale, item_count: int) -> SaleOut:
    return SaleOut(
        id=sale.id,
        invoice_code=sale.invoice_code,
        customer_name=sale.customer_name,
        total_amount=float(sale.total_amount),
        item_count=item_count,
        sale_date=sale.sale_date,
        created_by=sale.created_by,
        created_at=sale.created_at,
    )


def _sale_detail(db: Session, sale: Sale) -> SaleDetailOut:
    items = [
        SaleItemOut(
            id=item.id,
            product_id=item.product_id,
            sku=sku,
            product_name=name,
            unit=unit,
            qty=item.qty,
            selling_price=float(item.selling_price),
            cost_price=float(item.cost_price) if item.cost_price is not None else None,
            line_total=float(item.line_total),
        )
        for item, sku, name, unit in list_sale_items(db, sale.id)
    ]
    return SaleDetailOut(**_sale_out(sale, len(items)).model_dump(), items=items)


@router.post(
    "",
    response_model=SaleDetailOut,
    status_code=201,
    summary="Create sale",
    description=(
        "Creates the sale, its items and one `sale` movement per line in a single transaction. "
        "If any line lacks stock nothing is written."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def create_sale_endpoint(
    payload: SaleCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    sale = create_sale(
        db,
        items=[
            SaleLine(product_id=item.product_id, qty=item.qty, selling_price=item.selling_price)
            for item in payload.items
        ],
        customer_name=payload.customer_name,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _sale_detail(db, sale)


@router.get(
    "",
    response_model=SaleListOut,
    summary="List sales",
    responses=error_responses(400, 401, 422, 500),
)
def list_sales_endpoint(
    q: str | None = Query(default=None, description="Search invoice code or customer"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    start, end = day_bounds(start_date, end_date)
    total, rows = list_sales(db, search=q, start=start, end=end, limit=limit, offset=offset)
    items = [_sale_out(sale, item_count) for sale, item_count in rows]
    count = len(items)
    return SaleListOut(
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
    "/stats",
    response_model=SalesStatsOut,
    summary="Sales summary",
    description="Current-month revenue and transaction count, plus the all-time count.",
    responses=error_responses(401, 500),
)
def get_sales_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    stats = sales_stats(db)
    return SalesStatsOut(
        monthly_revenue=float(stats.monthly_revenue),
        monthly_transactions=stats.monthly_transactions,
        total_transactions=stats.total_transactions,
    )


@router.get(
    "/{sale_id}",
    response_model=SaleDetailOut,
    summary="Sale detail",
    responses=error_responses(401, 404, 500),
)
def get_sale(
    sale_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    return _sale_detail(db, get_sale_or_404(db, sale_id))
