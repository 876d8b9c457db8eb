from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockflow.schemas.common import PaginationMeta

LoanStatusValue = Literal["ACTIVE", "OVERDUE", "RETURNED"]


class LoanCreateIn(BaseModel):
    borrower_name: str = Field(min_length=1, max_length=100)
    borrower_phone: str = Field(min_length=6, max_length=30)
    product_id: int
    qty: int = Field(gt=0)
    due_date: datetime
    notes: str | None = Field(default=None, max_length=255)

    @field_validator("borrower_name", "borrower_phone")
    @classmethod
    def strip_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value cannot be empty")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "borrower_name": "Budi",
                "borrower_phone": "081234567890",
                "product_id": 1,
                "qty": 2,
                "due_date": "2026-11-01T17:00:00+07:00",
            }
        }
    )


class LoanOut(BaseModel):
    id: str
    transaction_code: str
    borrower_name: str
    borrower_phone: str
    product_id: int
    product_name: str | None = None
    qty: int
    loan_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: LoanStatusValue
    last_notified_at: datetime | None = None
    notes: str | None = None
    created_by: str
    created_at: datetime


class LoanListOut(BaseModel):
    items: list[LoanOut]
    pagination: PaginationMeta


class LoanStatsOut(BaseModel):
    active: int
    overdue: int
    returned: int
    total: int


class LoanReminderOut(BaseModel):
    loan_id: str
    sent: bool


class OverdueSweepOut(BaseModel):
    marked_overdue: int
    notified: int
    failed: int
    timestamp: datetime
