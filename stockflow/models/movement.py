from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base

MOVEMENT_STOCK_IN = "stock_in"
MOVEMENT_STOCK_OUT = "stock_out"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_LOAN_OUT = "loan_out"
MOVEMENT_LOAN_RETURN = "loan_return"
MOVEMENT_SALE = "sale"
MOVEMENT_CONSUMPTION = "consumption"
MOVEMENT_ADJUSTMENT = "adjustment"

MOVEMENT_TYPES = (
    MOVEMENT_STOCK_IN,
    MOVEMENT_STOCK_OUT,
    MOVEMENT_TRANSFER,
    MOVEMENT_LOAN_OUT,
    MOVEMENT_LOAN_RETURN,
    MOVEMENT_SALE,
    MOVEMENT_CONSUMPTION,
    MOVEMENT_ADJUSTMENT,
)


class Movement(Base):
    """
    Append-only stock ledger entry. Quantity is always a positive magnitude;
    direction comes from the location pair or the movement type.
    """
    __tablename__ = "movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    from_location_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("locations.id"), nullable=True)
    to_location_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("locations.id"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)  # loan or sale id
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    moved_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        Index("ix_movements_created_at", "created_at"),
        Index("ix_movements_product_created_at", "product_id", "created_at"),
    )
