from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_any_role
from stockflow.core.security_current import Principal
from stockflow.routers.products import category_scope
from stockflow.schemas.dashboard import DashboardStatsOut
from stockflow.services.dashboard_service import get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get(
    "/stats",
    response_model=DashboardStatsOut,
    summary="Get dashboard stats",
    description="Product and movement figures are limited to the caller's visible categories.",
    responses={
        200: {
            "description": "Dashboard stats",
            "content": {
                "application/json": {
                    "example": {
                        "total_products": 42,
                        "low_stock_count": 3,
                        "over_stock_count": 5,
                        "total_movements": 318,
                        "total_asset_value": 12500000.0,
                        "monthly_revenue": 3250000.0,
                        "monthly_sales_count": 14,
                        "active_loans": 4,
                        "overdue_loans": 1,
                        "chart": [{"date": "2026-10-17", "movements": 6, "revenue": 250000.0, "sales": 2}],
                        "low_stock_list": [
                            {
                                "id": 7,
                                "sku": "ELK-007",
                                "name": "Kabel Roll 50m",
                                "current_stock": 2,
                                "min_stock": 5,
                                "category_name": "Elektrik",
                            }
                        ],
                        "categories": [{"id": 1, "name": "Elektrik"}],
                    }
                }
            },
        },
        **error_responses(401, 500),
    },
)
def dashboard_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    return get_dashboard_stats(db, visible_category_ids=category_scope(db, principal))
