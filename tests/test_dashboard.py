from datetime import date, datetime, timezone
from decimal import Decimal

from stockflow.services.dashboard_service import daily_activity, get_dashboard_stats
from stockflow.services.loan_service import issue_loan
from stockflow.services.sales_service import SaleLine, create_sale

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


def _sell(db, admin, product, *, qty, price, on):
    return create_sale(
        db,
        items=[SaleLine(product_id=product.id, qty=qty, selling_price=Decimal(price))],
        actor_id=admin.id,
        now=on,
    )


def test_stats_count_stock_levels_and_asset_value(db, admin, make_product):
    make_product("Kabel", stock=10, min_stock=2, price=Decimal("1500"))
    make_product("Lampu", stock=1, min_stock=5, prefix="LMP")
    make_product("Saklar", stock=4, min_stock=3)

    stats = get_dashboard_stats(db, now=NOW)

    assert stats["total_products"] == 3
    assert stats["low_stock_count"] == 1
    assert stats["over_stock_count"] == 1
    assert stats["total_asset_value"] == 10 * 1500 + 1 * 1000 + 4 * 1000
    assert [row["name"] for row in stats["low_stock_list"]] == ["Lampu"]
    assert stats["low_stock_list"][0]["category_name"] == "Category LMP"
    assert [row["name"] for row in stats["categories"]] == ["Category ELK", "Category LMP"]


def test_stats_include_monthly_sales_and_open_loans(db, admin, make_product):
    product = make_product(stock=20)
    _sell(db, admin, product, qty=2, price="1000", on=NOW)
    _sell(db, admin, product, qty=1, price="500", on=datetime(2026, 9, 30, 9, 0, tzinfo=timezone.utc))
    issue_loan(
        db,
        borrower_name="Budi",
        borrower_phone="081234567890",
        product_id=product.id,
        qty=1,
        due_date=datetime(2026, 10, 20, tzinfo=timezone.utc),
        actor_id=admin.id,
        now=NOW,
    )

    stats = get_dashboard_stats(db, now=NOW)

    assert stats["monthly_revenue"] == 2000
    assert stats["monthly_sales_count"] == 1
    assert stats["active_loans"] == 1
    assert stats["overdue_loans"] == 0


def test_daily_activity_zero_fills_and_drops_older_days(db, admin, make_product):
    product = make_product(stock=20)
    _sell(db, admin, product, qty=1, price="1000", on=datetime(2026, 10, 15, 8, 0, tzinfo=timezone.utc))
    _sell(db, admin, product, qty=1, price="250", on=datetime(2026, 10, 15, 17, 0, tzinfo=timezone.utc))
    _sell(db, admin, product, qty=1, price="9999", on=datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc))

    chart = daily_activity(db, today=date(2026, 10, 17))

    assert [point["date"] for point in chart] == [date(2026, 10, day) for day in range(11, 18)]
    by_day = {point["date"]: point for point in chart}
    assert by_day[date(2026, 10, 15)]["sales"] == 2
    assert by_day[date(2026, 10, 15)]["revenue"] == 1250
    assert sum(point["sales"] for point in chart) == 2


def test_viewer_scope_limits_product_figures(db, admin, make_product):
    make_product("Kabel", stock=10, min_stock=2)
    lampu = make_product("Lampu", stock=1, min_stock=5, prefix="LMP")

    stats = get_dashboard_stats(db, visible_category_ids=[lampu.category_id], now=NOW)
    assert stats["total_products"] == 1
    assert stats["over_stock_count"] == 0
    assert stats["total_asset_value"] == 1000
    assert [row["id"] for row in stats["categories"]] == [lampu.category_id]

    hidden = get_dashboard_stats(db, visible_category_ids=[], now=NOW)
    assert hidden["total_products"] == 0
    assert hidden["low_stock_list"] == []
    assert hidden["categories"] == []
