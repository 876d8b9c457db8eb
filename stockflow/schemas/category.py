from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CategoryCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    prefix: str = Field(min_length=1, max_length=10)
    description: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[int] = None

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not cleaned:
            raise ValueError("prefix is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"name": "Elektronik", "prefix": "ELK", "description": "Peralatan listrik"}
        }
    )


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    prefix: Optional[str] = Field(default=None, min_length=1, max_length=10)
    description: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[int] = None

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().upper()


class CategoryOut(BaseModel):
    id: int
    name: str
    prefix: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    product_count: int = 0
    created_at: datetime


class CategoryListOut(BaseModel):
    items: list[CategoryOut]
