import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import (
    AlreadyReturnedError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockflow.core.id_utils import generate_dated_code
from stockflow.core.observability import log_event
from stockflow.core.time_utils import as_utc, utcnow
from stockflow.db.transactions import run_in_transaction
from stockflow.models.loan import Loan
from stockflow.models.movement import MOVEMENT_LOAN_OUT, MOVEMENT_LOAN_RETURN
from stockflow.models.product import Product
from stockflow.services.audit_service import (
    ACTION_CREATE,
    ACTION_NOTIFY,
    ACTION_SWEEP,
    ACTION_UPDATE,
    AuditRecorder,
    record_audit,
)
from stockflow.services.code_service import run_with_generated_code
from stockflow.services.inventory_service import (
    DIRECTION_IN,
    DIRECTION_OUT,
    apply_aggregate_movement,
    get_product_or_404,
    require_positive_quantity,
)
from stockflow.services.loan_state import LoanStatus, parse_status, statuses_that_can_become, transition
from stockflow.services.messaging_provider import (
    NotificationSender,
    build_loan_reminder_message,
    normalize_phone,
)

logger = logging.getLogger("stockflow.ledger")
notify_logger = logging.getLogger("stockflow.notify")


@dataclass(frozen=True)
class SweepResult:
    marked_overdue: int
    notified: int
    failed: int
    timestamp: datetime


@dataclass(frozen=True)
class LoanStats:
    active: int
    overdue: int
    returned: int

    @property
    def total(self) -> int:
        return self.active + self.overdue + self.returned


def get_loan_or_404(db: Session, loan_id: str) -> Loan:
    loan = db.execute(select(Loan).where(Loan.id == loan_id)).scalar_one_or_none()
    if not loan:
        raise NotFoundError("Loan not found")
    return loan


def issue_loan(
    db: Session,
    *,
    borrower_name: str,
    borrower_phone: str,
    product_id: int,
    qty: int,
    due_date: datetime,
    actor_id: str,
    notes: str | None = None,
    audit: AuditRecorder | None = None,
    now: datetime | None = None,
) -> Loan:
    require_positive_quantity(qty)
    borrower_name = (borrower_name or "").strip()
    borrower_phone = (borrower_phone or "").strip()
    if not borrower_name:
        raise ValidationError("Borrower name is required")
    if not borrower_phone:
        raise ValidationError("Borrower phone is required")

    loan_date = as_utc(now) or utcnow()
    due = as_utc(due_date)
    if due is None or due < loan_date.replace(hour=0, minute=0, second=0, microsecond=0):
        raise ValidationError("Due date cannot be before the loan date")

    product = get_product_or_404(db, product_id)
    if product.current_stock < qty:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=product.current_stock,
            requested=qty,
        )

    def _issue(transaction_code: str) -> Loan:
        loan = Loan(
            id=str(uuid.uuid4()),
            transaction_code=transaction_code,
            borrower_name=borrower_name,
            borrower_phone=borrower_phone,
            product_id=product.id,
            qty=qty,
            loan_date=loan_date,
            due_date=due,
            status=LoanStatus.ACTIVE.value,
            notes=notes,
            created_by=actor_id,
        )
        db.add(loan)
        db.flush()
        # Re-checks stock inside the transaction; concurrent issues cannot over-draw.
        apply_aggregate_movement(
            db,
            product=product,
            quantity=qty,
            direction=DIRECTION_OUT,
            movement_type=MOVEMENT_LOAN_OUT,
            actor_id=actor_id,
            notes=f"Loan to {borrower_name} ({transaction_code})",
            reference_id=loan.id,
        )
        return loan

    loan = run_with_generated_code(
        db,
        settings.loan_code_prefix,
        _issue,
        generate=lambda prefix: generate_dated_code(prefix, now=loan_date),
    )
    db.refresh(loan)
    log_event(
        logger,
        "loan_issued",
        loan_id=loan.id,
        transaction_code=loan.transaction_code,
        product_id=product_id,
        qty=qty,
    )
    record_audit(
        audit,
        actor_id,
        ACTION_CREATE,
        "loan",
        loan.id,
        {
            "transactionCode": loan.transaction_code,
            "borrower": borrower_name,
            "productId": product_id,
            "qty": qty,
        },
    )
    return loan


def return_loan(
    db: Session,
    *,
    loan_id: str,
    actor_id: str,
    audit: AuditRecorder | None = None,
    now: datetime | None = None,
) -> Loan:
    loan = get_loan_or_404(db, loan_id)
    new_status = transition(loan.status, LoanStatus.RETURNED)
    returned_at = as_utc(now) or utcnow()

    def _return() -> Loan:
        # Guarded on status so two concurrent returns restock only once.
        result = db.execute(
            update(Loan)
            .where(Loan.id == loan_id, Loan.status.in_(statuses_that_can_become(LoanStatus.RETURNED)))
            .values(status=new_status.value, return_date=returned_at, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyReturnedError("Loan already returned")
        product = get_product_or_404(db, loan.product_id)
        apply_aggregate_movement(
            db,
            product=product,
            quantity=loan.qty,
            direction=DIRECTION_IN,
            movement_type=MOVEMENT_LOAN_RETURN,
            actor_id=actor_id,
            notes=f"Return from {loan.borrower_name} ({loan.transaction_code})",
            reference_id=loan.id,
        )
        return loan

    run_in_transaction(db, _return)
    db.refresh(loan)
    log_event(logger, "loan_returned", loan_id=loan.id, transaction_code=loan.transaction_code, qty=loan.qty)
    record_audit(
        audit,
        actor_id,
        ACTION_UPDATE,
        "loan",
        loan.id,
        {"action": LoanStatus.RETURNED.value, "transactionCode": loan.transaction_code},
    )
    return loan


def _dispatch_reminder(
    db: Session,
    *,
    loan: Loan,
    product_name: str,
    sender: NotificationSender,
    now: datetime,
    stamp_only_before: datetime | None = None,
) -> bool:
    """Send one reminder; stamp ``last_notified_at`` only when the sender reports success."""
    phone = normalize_phone(loan.borrower_phone)
    message = build_loan_reminder_message(
        loan.borrower_name,
        product_name,
        loan.qty,
        as_utc(loan.due_date),
        loan.transaction_code,
    )
    try:
        sent = bool(sender.send(phone, message))
    except Exception as exc:
        log_event(
            notify_logger,
            "loan_reminder_failed",
            level=logging.WARNING,
            loan_id=loan.id,
            provider=getattr(sender, "name", "unknown"),
            error=str(exc),
        )
        return False

    if not sent:
        log_event(notify_logger, "loan_reminder_not_sent", level=logging.WARNING, loan_id=loan.id)
        return False

    stmt = update(Loan).where(Loan.id == loan.id)
    if stamp_only_before is not None:
        stmt = stmt.where(
            or_(Loan.last_notified_at.is_(None), Loan.last_notified_at < stamp_only_before)
        )
    db.execute(
        stmt.values(last_notified_at=now).execution_options(synchronize_session=False)
    )
    db.commit()
    log_event(notify_logger, "loan_reminder_sent", loan_id=loan.id, phone=phone)
    return True


def send_loan_reminder(
    db: Session,
    *,
    loan_id: str,
    actor_id: str,
    sender: NotificationSender,
    audit: AuditRecorder | None = None,
    now: datetime | None = None,
) -> bool:
    loan = get_loan_or_404(db, loan_id)
    if loan.status == LoanStatus.RETURNED.value:
        raise AlreadyReturnedError("Loan already returned")
    product = get_product_or_404(db, loan.product_id)

    sent = _dispatch_reminder(
        db,
        loan=loan,
        product_name=product.name,
        sender=sender,
        now=as_utc(now) or utcnow(),
    )
    record_audit(
        audit,
        actor_id,
        ACTION_NOTIFY,
        "loan",
        loan.id,
        {"phone": loan.borrower_phone, "sent": sent},
    )
    return sent


def sweep_overdue_loans(
    db: Session,
    *,
    sender: NotificationSender,
    now: datetime | None = None,
    audit: AuditRecorder | None = None,
) -> SweepResult:
    """
    Mark past-due ACTIVE loans OVERDUE, then remind every OVERDUE borrower not
    notified within ``loan_reminder_interval_hours``.

    Safe to re-run and to run alongside returns: every status write is guarded
    on the expected current status, so a RETURNED loan is never touched.
    """
    moment = as_utc(now) or utcnow()
    cutoff = moment - timedelta(hours=settings.loan_reminder_interval_hours)

    def _mark_overdue() -> int:
        overdue_ids = db.execute(
            select(Loan.id).where(
                Loan.status == LoanStatus.ACTIVE.value,
                Loan.due_date < moment,
            )
        ).scalars().all()
        if not overdue_ids:
            return 0
        result = db.execute(
            update(Loan)
            .where(
                Loan.id.in_(overdue_ids),
                Loan.status.in_(statuses_that_can_become(LoanStatus.OVERDUE)),
            )
            .values(status=LoanStatus.OVERDUE.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    marked = run_in_transaction(db, _mark_overdue)

    candidates = db.execute(
        select(Loan, Product.name)
        .join(Product, Product.id == Loan.product_id)
        .where(
            Loan.status == LoanStatus.OVERDUE.value,
            or_(Loan.last_notified_at.is_(None), Loan.last_notified_at < cutoff),
        )
        .order_by(Loan.due_date.asc())
    ).all()

    notified = 0
    failed = 0
    for loan, product_name in candidates:
        if _dispatch_reminder(
            db,
            loan=loan,
            product_name=product_name,
            sender=sender,
            now=moment,
            stamp_only_before=cutoff,
        ):
            notified += 1
        else:
            failed += 1

    log_event(
        logger,
        "overdue_sweep",
        marked_overdue=marked,
        notified=notified,
        failed=failed,
    )
    if marked or notified or failed:
        record_audit(
            audit,
            None,
            ACTION_SWEEP,
            "loan",
            None,
            {"markedOverdue": marked, "notified": notified, "failed": failed},
        )
    return SweepResult(marked_overdue=marked, notified=notified, failed=failed, timestamp=moment)


def loan_stats(db: Session) -> LoanStats:
    rows = db.execute(select(Loan.status, func.count(Loan.id)).group_by(Loan.status)).all()
    counts = {status: int(count) for status, count in rows}
    return LoanStats(
        active=counts.get(LoanStatus.ACTIVE.value, 0),
        overdue=counts.get(LoanStatus.OVERDUE.value, 0),
        returned=counts.get(LoanStatus.RETURNED.value, 0),
    )


def list_loans(
    db: Session,
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[tuple[Loan, str]]]:
    filters = []
    if status and status.strip().upper() != "ALL":
        filters.append(Loan.status == parse_status(status).value)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Loan.borrower_name).like(pattern),
                func.lower(Loan.transaction_code).like(pattern),
            )
        )
    total = int(db.execute(select(func.count(Loan.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Loan, Product.name)
        .join(Product, Product.id == Loan.product_id)
        .where(*filters)
        .order_by(Loan.loan_date.desc(), Loan.id.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    return total, [(loan, product_name) for loan, product_name in rows]
