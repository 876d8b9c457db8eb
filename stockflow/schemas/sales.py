from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta


class SaleItemIn(BaseModel):
    product_id: int
    qty: int = Field(gt=0)
    selling_price: Decimal = Field(ge=0)


class SaleCreateIn(BaseModel):
    customer_name: str | None = Field(default=None, max_length=100)
    items: list[SaleItemIn]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_name": "Toko Maju",
                "items": [
                    {"product_id": 1, "qty": 2, "selling_price": 250000},
                    {"product_id": 2, "qty": 1, "selling_price": 75000},
                ],
            }
        }
    )


class SaleOut(BaseModel):
    id: str
    invoice_code: str
    customer_name: str | None = None
    total_amount: float
    item_count: int = 0
    sale_date: datetime
    created_by: str
    created_at: datetime


class SaleItemOut(BaseModel):
    id: int
    product_id: int
    sku: str
    product_name: str
    unit: str
    qty: int
    selling_price: float
    cost_price: float | None = None
    line_total: float


class SaleDetailOut(SaleOut):
    items: list[SaleItemOut]


class SaleListOut(BaseModel):
    items: list[SaleOut]
    pagination: PaginationMeta


class SalesStatsOut(BaseModel):
    monthly_revenue: float
    monthly_transactions: int
    total_transactions: int
