import hmac

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.config import settings
from stockflow.core.deps import get_audit_recorder, get_db, get_sender
from stockflow.core.errors import UnauthorizedError
from stockflow.schemas.loan import OverdueSweepOut
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.loan_service import sweep_overdue_loans
from stockflow.services.messaging_provider import NotificationSender

router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_key(
    key: str | None = Query(default=None),
    x_cron_key: str | None = Header(default=None),
) -> None:
    supplied = key or x_cron_key or ""
    if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), settings.cron_secret.encode("utf-8")):
        raise UnauthorizedError("Invalid cron key")


def _sweep(db: Session, sender: NotificationSender, audit: AuditRecorder) -> OverdueSweepOut:
    result = sweep_overdue_loans(db, sender=sender, audit=audit)
    return OverdueSweepOut(
        marked_overdue=result.marked_overdue,
        notified=result.notified,
        failed=result.failed,
        timestamp=result.timestamp,
    )


@router.post(
    "/check-overdue",
    response_model=OverdueSweepOut,
    summary="Run overdue sweep",
    description=(
        "Marks past-due ACTIVE loans OVERDUE and reminds borrowers not notified in the last "
        "reminder interval. Pass the cron secret as `?key=` or `X-Cron-Key`."
    ),
    dependencies=[Depends(require_cron_key)],
    responses=error_responses(401, 500, 503),
)
def check_overdue(
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_sender),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    return _sweep(db, sender, audit)


@router.get(
    "/check-overdue",
    response_model=OverdueSweepOut,
    summary="Run overdue sweep (GET)",
    description="Same as the POST variant, for schedulers that can only issue GET requests.",
    dependencies=[Depends(require_cron_key)],
    responses=error_responses(401, 500, 503),
)
def check_overdue_get(
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_sender),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    return _sweep(db, sender, audit)
