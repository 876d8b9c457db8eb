from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from stockflow.schemas.common import PaginationMeta

StockStatus = Literal["LOW", "IN_STOCK", "OVER_STOCK"]


class ProductCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category_id: int
    sku: Optional[str] = Field(default=None, max_length=50, description="Leave empty to auto-allocate PREFIX-NNN")
    description: Optional[str] = Field(default=None, max_length=500)
    unit: str = Field(default="pcs", min_length=1, max_length=20)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    min_stock: int = Field(default=0, ge=0)
    current_stock: int = Field(default=0, ge=0, description="Opening balance, recorded as an adjustment movement")
    is_consumable: bool = False
    condition: Optional[str] = Field(default=None, max_length=30)
    image: Optional[str] = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Kabel Roll 50m",
                "category_id": 1,
                "unit": "roll",
                "price": 250000,
                "cost_price": 180000,
                "min_stock": 5,
                "current_stock": 12,
            }
        }
    )


class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category_id: Optional[int] = None
    sku: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    price: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    min_stock: Optional[int] = Field(default=None, ge=0)
    current_stock: Optional[int] = Field(
        default=None,
        ge=0,
        description="New on-hand total; the difference is recorded as an adjustment movement",
    )
    is_consumable: Optional[bool] = None
    condition: Optional[str] = Field(default=None, max_length=30)
    image: Optional[str] = Field(default=None, max_length=255)


class StockSetIn(BaseModel):
    current_stock: int = Field(ge=0)
    notes: Optional[str] = Field(default=None, max_length=255)


class ConsumeIn(BaseModel):
    qty: int = Field(gt=0)
    notes: Optional[str] = Field(default=None, max_length=255)


class ProductOut(BaseModel):
    id: int
    sku: str
    name: str
    category_id: int
    category_name: Optional[str] = None
    description: Optional[str] = None
    unit: str
    price: float
    cost_price: float
    min_stock: int
    current_stock: int
    stock_status: StockStatus
    is_consumable: bool
    condition: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta


class ProductLocationOut(BaseModel):
    location_id: int
    location_name: str
    location_type: str
    quantity: int


class ProductMovementOut(BaseModel):
    id: int
    type: str
    quantity: int
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    notes: Optional[str] = None
    moved_by: str
    created_at: datetime


class ProductDetailOut(ProductOut):
    locations: list[ProductLocationOut]
    unlocated_stock: int
    recent_movements: list[ProductMovementOut]


class NextSkuOut(BaseModel):
    category_id: int
    sku: str
