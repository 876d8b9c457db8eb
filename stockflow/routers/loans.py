from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db, get_sender
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.core.time_utils import as_utc
from stockflow.models.loan import Loan
from stockflow.schemas.common import PaginationMeta
from stockflow.schemas.loan import LoanCreateIn, LoanListOut, LoanOut, LoanReminderOut, LoanStatsOut
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.inventory_service import get_product_or_404
from stockflow.services.loan_service import (
    get_loan_or_404,
    issue_loan,
    list_loans,
    loan_stats,
    return_loan,
    send_loan_reminder,
)
from stockflow.services.messaging_provider import NotificationSender

router = APIRouter(prefix="/loans", tags=["loans"])


def _loan_out(loan: Loan, product_name: str | None = None) -> LoanOut:
    return LoanOut(
        id=loan.id,
        transaction_code=loan.transaction_code,
        borrower_name=loan.borrower_name,
        borrower_phone=loan.borrower_phone,
        product_id=loan.product_id,
        product_name=product_name,
        qty=loan.qty,
        loan_date=as_utc(loan.loan_date),
        due_date=as_utc(loan.due_date),
        return_date=as_utc(loan.return_date),
        status=loan.status,
        last_notified_at=as_utc(loan.last_notified_at),
        notes=loan.notes,
        created_by=loan.created_by,
        created_at=loan.created_at,
    )


@router.post(
    "",
    response_model=LoanOut,
    status_code=201,
    summary="Issue loan",
    description="Decrements stock and records a `loan_out` movement in one transaction.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def create_loan(
    payload: LoanCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    loan = issue_loan(
        db,
        borrower_name=payload.borrower_name,
        borrower_phone=payload.borrower_phone,
        product_id=payload.product_id,
        qty=payload.qty,
        due_date=payload.due_date,
        notes=payload.notes,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _loan_out(loan, get_product_or_404(db, loan.product_id).name)


@router.get(
    "",
    response_model=LoanListOut,
    summary="List loans",
    responses=error_responses(400, 401, 422, 500),
)
def list_loans_endpoint(
    status: str | None = Query(default=None, description="ACTIVE, OVERDUE, RETURNED or ALL"),
    q: str | None = Query(default=None, description="Search borrower or transaction code"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    total, rows = list_loans(db, status=status, search=q, limit=limit, offset=offset)
    items = [_loan_out(loan, product_name) for loan, product_name in rows]
    count = len(items)
    return LoanListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/stats",
    response_model=LoanStatsOut,
    summary="Loan counts by status",
    responses=error_responses(401, 500),
)
def get_loan_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    stats = loan_stats(db)
    return LoanStatsOut(active=stats.active, overdue=stats.overdue, returned=stats.returned, total=stats.total)


@router.get(
    "/{loan_id}",
    response_model=LoanOut,
    summary="Loan detail",
    responses=error_responses(401, 404, 500),
)
def get_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    loan = get_loan_or_404(db, loan_id)
    return _loan_out(loan, get_product_or_404(db, loan.product_id).name)


@router.post(
    "/{loan_id}/return",
    response_model=LoanOut,
    summary="Return loan",
    description="Restocks the borrowed quantity. A loan can be returned only once.",
    responses=error_responses(401, 403, 404, 409, 500, 503),
)
def return_loan_endpoint(
    loan_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    loan = return_loan(db, loan_id=loan_id, actor_id=principal.actor_id, audit=audit)
    return _loan_out(loan, get_product_or_404(db, loan.product_id).name)


@router.post(
    "/{loan_id}/remind",
    response_model=LoanReminderOut,
    summary="Send reminder",
    description="Sends a WhatsApp reminder to the borrower now. `sent` is false when the provider did not accept it.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def remind(
    loan_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    sender: NotificationSender = Depends(get_sender),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    sent = send_loan_reminder(db, loan_id=loan_id, actor_id=principal.actor_id, sender=sender, audit=audit)
    return LoanReminderOut(loan_id=loan_id, sent=sent)
