from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class AuditTrail(Base):
    __tablename__ = "audit_trail"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Null for scheduler-initiated actions.
    actor_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_audit_trail_created_at", "created_at"),
        Index("ix_audit_trail_action_created_at", "action", "created_at"),
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
    )
