import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from stockflow.core.observability import log_event
from stockflow.models.audit_log import AuditTrail

logger = logging.getLogger("stockflow.audit")

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_MOVE = "MOVE"
ACTION_NOTIFY = "NOTIFY"
ACTION_SWEEP = "SWEEP"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


@dataclass(frozen=True)
class AuditEntry:
    actor_user_id: str | None
    action: str
    entity_type: str
    entity_id: str | None = None
    details: dict[str, Any] | None = field(default=None)
    ip_address: str | None = None


class AuditRecorder:
    """
    Appends audit trail rows in a session of its own, after the ledger commit.

    Writes are best-effort: failures are logged on ``stockflow.audit`` and never
    reach the caller. When ``schedule`` is given (e.g. FastAPI's
    ``BackgroundTasks.add_task``) the write is handed to it instead of running
    inline.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        *,
        schedule: Callable[..., Any] | None = None,
    ):
        self._session_factory = session_factory
        self._schedule = schedule

    def record(
        self,
        actor_user_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | int | None = None,
        details: dict[str, Any] | None = None,
        *,
        ip_address: str | None = None,
    ) -> None:
        entry = AuditEntry(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=_jsonable(details) if details is not None else None,
            ip_address=ip_address,
        )
        if self._schedule is not None:
            try:
                self._schedule(self.write, entry)
                return
            except Exception as exc:
                log_event(
                    logger,
                    "audit_schedule_failed",
                    level=logging.WARNING,
                    action=action,
                    entity_type=entity_type,
                    error=str(exc),
                )
        self.write(entry)

    def write(self, entry: AuditEntry) -> bool:
        try:
            db = self._session_factory()
            try:
                db.add(
                    AuditTrail(
                        id=str(uuid.uuid4()),
                        actor_user_id=entry.actor_user_id,
                        action=entry.action,
                        entity_type=entry.entity_type,
                        entity_id=entry.entity_id,
                        details=entry.details,
                        ip_address=entry.ip_address,
                    )
                )
                db.commit()
            finally:
                db.close()
        except Exception as exc:
            log_event(
                logger,
                "audit_write_failed",
                level=logging.ERROR,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                error=str(exc),
            )
            return False
        return True


def record_audit(
    audit: AuditRecorder | None,
    actor_user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    if audit is None:
        return
    audit.record(actor_user_id, action, entity_type, entity_id, details)


def list_audit_entries(
    db: Session,
    *,
    actor_user_id: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[AuditTrail]]:
    """Newest-first audit rows; ``action`` matches upper-cased, ``entity_type`` lower-cased."""
    filters = []
    if actor_user_id:
        filters.append(AuditTrail.actor_user_id == actor_user_id)
    if action and action.strip():
        filters.append(AuditTrail.action == action.strip().upper())
    if entity_type and entity_type.strip():
        filters.append(AuditTrail.entity_type == entity_type.strip().lower())
    if start is not None:
        filters.append(AuditTrail.created_at >= start)
    if end is not None:
        filters.append(AuditTrail.created_at <= end)

    total = int(db.execute(select(func.count(AuditTrail.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(AuditTrail)
        .where(*filters)
        .order_by(AuditTrail.created_at.desc(), AuditTrail.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return total, list(rows)
