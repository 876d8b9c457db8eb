from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockflow.core.errors import EmptyOrderError, InsufficientStockError, NotFoundError, ValidationError
from stockflow.models.movement import MOVEMENT_SALE, Movement
from stockflow.models.sales import Sale, SaleItem
from stockflow.services.sales_service import (
    SaleLine,
    create_sale,
    list_sale_items,
    list_sales,
    sale_total,
    sales_stats,
)


def _count(db, model) -> int:
    return int(db.execute(select(func.count()).select_from(model)).scalar_one())


def test_multi_line_sale_writes_items_movements_and_total(db, admin, make_product):
    kabel = make_product("Kabel", stock=10, cost_price=Decimal("700"))
    lampu = make_product("Lampu", stock=5)

    sale = create_sale(
        db,
        items=[
            SaleLine(product_id=kabel.id, qty=2, selling_price=Decimal("1000")),
            SaleLine(product_id=lampu.id, qty=1, selling_price=Decimal("500")),
        ],
        customer_name="  Toko Maju ",
        actor_id=admin.id,
        now=datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc),
    )

    assert sale.total_amount == Decimal("2500.00")
    assert sale.invoice_code.startswith("INV-20261017-")
    assert sale.customer_name == "Toko Maju"

    db.refresh(kabel)
    db.refresh(lampu)
    assert kabel.current_stock == 8
    assert lampu.current_stock == 4

    movements = db.execute(select(Movement).where(Movement.reference_id == sale.id)).scalars().all()
    assert len(movements) == 2
    assert {movement.type for movement in movements} == {MOVEMENT_SALE}

    items = list_sale_items(db, sale.id)
    assert sum(item.line_total for item, *_ in items) == sale.total_amount
    kabel_item = next(item for item, sku, name, unit in items if name == "Kabel")
    assert kabel_item.cost_price == Decimal("700.00")


def test_sale_with_one_short_line_writes_nothing(db, admin, make_product):
    kabel = make_product("Kabel", stock=10)
    lampu = make_product("Lampu", stock=1)

    with pytest.raises(InsufficientStockError) as exc_info:
        create_sale(
            db,
            items=[
                SaleLine(product_id=kabel.id, qty=2, selling_price=Decimal("1000")),
                SaleLine(product_id=lampu.id, qty=2, selling_price=Decimal("500")),
            ],
            actor_id=admin.id,
        )

    assert exc_info.value.product_id == lampu.id
    assert _count(db, Sale) == 0
    assert _count(db, SaleItem) == 0
    assert _count(db, Movement) == 0
    db.refresh(kabel)
    db.refresh(lampu)
    assert (kabel.current_stock, lampu.current_stock) == (10, 1)


def test_duplicate_lines_are_checked_on_summed_quantity(db, admin, make_product):
    kabel = make_product("Kabel", stock=3)
    with pytest.raises(InsufficientStockError) as exc_info:
        create_sale(
            db,
            items=[
                SaleLine(product_id=kabel.id, qty=2, selling_price=Decimal("1000")),
                SaleLine(product_id=kabel.id, qty=2, selling_price=Decimal("900")),
            ],
            actor_id=admin.id,
        )
    assert exc_info.value.requested == 4
    assert _count(db, Sale) == 0


def test_empty_sale_is_rejected(db, admin):
    with pytest.raises(EmptyOrderError):
        create_sale(db, items=[], actor_id=admin.id)


def test_invalid_lines_are_rejected_before_any_write(db, admin, make_product):
    kabel = make_product("Kabel", stock=3)
    with pytest.raises(ValidationError):
        create_sale(db, items=[SaleLine(product_id=kabel.id, qty=0, selling_price=Decimal("1"))], actor_id=admin.id)
    with pytest.raises(ValidationError):
        create_sale(db, items=[SaleLine(product_id=kabel.id, qty=1, selling_price=Decimal("-1"))], actor_id=admin.id)
    with pytest.raises(NotFoundError):
        create_sale(db, items=[SaleLine(product_id=4242, qty=1, selling_price=Decimal("1"))], actor_id=admin.id)
    assert _count(db, Sale) == 0


def test_sale_total_rounds_to_cents():
    lines = [
        SaleLine(product_id=1, qty=3, selling_price=Decimal("0.335")),
        SaleLine(product_id=2, qty=1, selling_price=Decimal("10")),
    ]
    assert sale_total(lines) == Decimal("11.02")


def test_sales_stats_and_listing(db, admin, make_product):
    kabel = make_product("Kabel", stock=20)
    october = datetime(2026, 10, 5, 10, 0, tzinfo=timezone.utc)
    september = datetime(2026, 9, 20, 10, 0, tzinfo=timezone.utc)
    create_sale(db, items=[SaleLine(kabel.id, 1, Decimal("1000"))], customer_name="Andi", actor_id=admin.id, now=september)
    create_sale(db, items=[SaleLine(kabel.id, 2, Decimal("1000"))], customer_name="Sari", actor_id=admin.id, now=october)

    stats = sales_stats(db, now=datetime(2026, 10, 17, tzinfo=timezone.utc))
    assert stats.monthly_revenue == Decimal("2000.00")
    assert stats.monthly_transactions == 1
    assert stats.total_transactions == 2

    total, rows = list_sales(db, search="sari")
    assert total == 1
    sale, item_count = rows[0]
    assert sale.customer_name == "Sari"
    assert item_count == 1

    total, _ = list_sales(db, start=datetime(2026, 10, 1, tzinfo=timezone.utc))
    assert total == 1
