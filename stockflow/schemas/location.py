from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LocationType = Literal["PHYSICAL", "VIRTUAL"]


class LocationCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    type: LocationType = "PHYSICAL"
    parent_id: int | None = None
    description: str | None = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"name": "Gudang A - Rak 2", "type": "PHYSICAL", "parent_id": 1}
        }
    )


class LocationUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    type: LocationType | None = None
    parent_id: int | None = None
    description: str | None = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "LocationUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class LocationOut(BaseModel):
    id: int
    name: str
    type: LocationType
    parent_id: int | None = None
    description: str | None = None
    total_quantity: int = 0
    created_at: datetime
    updated_at: datetime


class LocationListOut(BaseModel):
    items: list[LocationOut]


class LocationStockOut(BaseModel):
    product_id: int
    sku: str
    name: str
    quantity: int


class LocationDetailOut(LocationOut):
    stock: list[LocationStockOut]
