from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from stockflow.core import id_utils
from stockflow.core.config import settings
from stockflow.core.errors import ConflictError, TransientStoreError
from stockflow.db import transactions
from stockflow.db.transactions import run_in_transaction
from stockflow.models.loan import Loan
from stockflow.models.sales import Sale
from stockflow.services.loan_service import issue_loan
from stockflow.services.sales_service import SaleLine, create_sale

T0 = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def sleeps(monkeypatch):
    recorded: list[float] = []
    monkeypatch.setattr(transactions.time, "sleep", recorded.append)
    return recorded


def _suffixes(monkeypatch, values):
    sequence = iter(values)
    monkeypatch.setattr(id_utils.random, "randint", lambda low, high: next(sequence))


def _sell(db, admin, product, qty=1):
    return create_sale(
        db,
        items=[SaleLine(product_id=product.id, qty=qty, selling_price=Decimal("1000"))],
        actor_id=admin.id,
        now=T0,
    )


def test_transient_failures_are_retried_then_reported(db, sleeps):
    calls = []

    def work():
        calls.append(1)
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    with pytest.raises(TransientStoreError):
        run_in_transaction(db, work)

    assert len(calls) == settings.db_transient_retry_attempts
    assert sleeps == [0.05 * (2 ** n) for n in range(settings.db_transient_retry_attempts - 1)]


def test_transient_failure_then_success_returns_result(db, sleeps):
    outcomes = [OperationalError("SELECT 1", {}, Exception("deadlock detected")), None]

    def work():
        failure = outcomes.pop(0)
        if failure:
            raise failure
        return "done"

    assert run_in_transaction(db, work) == "done"
    assert len(sleeps) == 1


def test_integrity_error_becomes_conflict_without_retry(db, sleeps):
    calls = []

    def work():
        calls.append(1)
        raise IntegrityError("INSERT INTO sales", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(ConflictError, match="Invoice taken"):
        run_in_transaction(db, work, conflict_message="Invoice taken")
    assert len(calls) == 1
    assert sleeps == []


def test_non_transient_database_error_propagates(db, sleeps):
    def work():
        raise ProgrammingError("SELECT nope", {}, Exception("no such column"))

    with pytest.raises(ProgrammingError):
        run_in_transaction(db, work)
    assert sleeps == []


def test_invoice_code_collision_retries_with_a_fresh_code(db, admin, make_product, monkeypatch):
    product = make_product(stock=10)
    _suffixes(monkeypatch, [1, 1, 2])

    first = _sell(db, admin, product)
    second = _sell(db, admin, product)

    assert first.invoice_code == "INV-20261017-001"
    assert second.invoice_code == "INV-20261017-002"
    db.refresh(product)
    assert product.current_stock == 8


def test_invoice_code_collision_gives_up_and_leaves_stock_alone(db, admin, make_product, monkeypatch):
    product = make_product(stock=10)
    _suffixes(monkeypatch, [1] * (1 + settings.code_generation_attempts))
    _sell(db, admin, product, qty=2)

    with pytest.raises(ConflictError):
        _sell(db, admin, product, qty=3)

    db.refresh(product)
    assert product.current_stock == 8
    assert db.execute(select(func.count(Sale.id))).scalar_one() == 1


def test_loan_code_collision_retries_with_a_fresh_code(db, admin, make_product, monkeypatch):
    product = make_product(stock=10)
    _suffixes(monkeypatch, [7, 7, 8])

    codes = [
        issue_loan(
            db,
            borrower_name="Budi",
            borrower_phone="081234567890",
            product_id=product.id,
            qty=1,
            due_date=T0 + timedelta(days=3),
            actor_id=admin.id,
            now=T0,
        ).transaction_code
        for _ in range(2)
    ]

    assert codes == ["LN-20261017-007", "LN-20261017-008"]
    assert db.execute(select(func.count(Loan.id))).scalar_one() == 2
    db.refresh(product)
    assert product.current_stock == 8
