from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.money import ZERO_MONEY, to_money
from stockflow.core.time_utils import as_utc, utcnow
from stockflow.models.category import Category
from stockflow.models.movement import Movement
from stockflow.models.product import Product
from stockflow.models.sales import Sale
from stockflow.services.loan_service import loan_stats
from stockflow.services.sales_service import sales_stats

CHART_DAYS = 7
LOW_STOCK_LIST_LIMIT = 10


def _day_key(value) -> str:
    # SQLite returns DATE() as text, PostgreSQL as a date.
    return str(value)[:10]


def _product_filters(visible_category_ids: list[int] | None) -> list:
    if visible_category_ids is None:
        return []
    return [Product.category_id.in_(visible_category_ids)]


def get_dashboard_stats(
    db: Session,
    *,
    visible_category_ids: list[int] | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Headline numbers for the dashboard.

    Product and movement figures honour ``visible_category_ids`` (``None``
    means unrestricted). Sales and loan figures are store-wide.
    """
    moment = as_utc(now) or utcnow()
    product_filters = _product_filters(visible_category_ids)

    total_products, asset_value = db.execute(
        select(
            func.count(Product.id),
            func.coalesce(func.sum(Product.current_stock * Product.price), 0),
        ).where(*product_filters)
    ).one()
    low_stock_count = db.execute(
        select(func.count(Product.id)).where(Product.current_stock < Product.min_stock, *product_filters)
    ).scalar_one()
    over_stock_count = db.execute(
        select(func.count(Product.id)).where(Product.current_stock > 2 * Product.min_stock, *product_filters)
    ).scalar_one()

    movement_stmt = select(func.count(Movement.id))
    if product_filters:
        movement_stmt = movement_stmt.join(Product, Product.id == Movement.product_id).where(*product_filters)
    total_movements = db.execute(movement_stmt).scalar_one()

    sales = sales_stats(db, now=moment)
    loans = loan_stats(db)

    low_stock_rows = db.execute(
        select(Product, Category.name)
        .outerjoin(Category, Category.id == Product.category_id)
        .where(Product.current_stock < Product.min_stock, *product_filters)
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .limit(LOW_STOCK_LIST_LIMIT)
    ).all()

    category_stmt = select(Category.id, Category.name).order_by(Category.name.asc())
    if visible_category_ids is not None:
        category_stmt = category_stmt.where(Category.id.in_(visible_category_ids))
    categories = db.execute(category_stmt).all()

    return {
        "total_products": int(total_products or 0),
        "low_stock_count": int(low_stock_count or 0),
        "over_stock_count": int(over_stock_count or 0),
        "total_movements": int(total_movements or 0),
        "total_asset_value": float(to_money(asset_value or 0)),
        "monthly_revenue": float(sales.monthly_revenue),
        "monthly_sales_count": sales.monthly_transactions,
        "active_loans": loans.active,
        "overdue_loans": loans.overdue,
        "chart": daily_activity(db, visible_category_ids=visible_category_ids, today=moment.date()),
        "low_stock_list": [
            {
                "id": product.id,
                "sku": product.sku,
                "name": product.name,
                "current_stock": product.current_stock,
                "min_stock": product.min_stock,
                "category_name": category_name,
            }
            for product, category_name in low_stock_rows
        ],
        "categories": [{"id": category_id, "name": name} for category_id, name in categories],
    }


def daily_activity(
    db: Session,
    *,
    visible_category_ids: list[int] | None = None,
    today: date | None = None,
    days: int = CHART_DAYS,
) -> list[dict]:
    """One point per day for the last ``days`` days, oldest first, with empty days zero-filled."""
    end_day = today or utcnow().date()
    first_day = end_day - timedelta(days=days - 1)
    window_start = datetime(first_day.year, first_day.month, first_day.day, tzinfo=timezone.utc)

    movement_day = func.date(Movement.created_at)
    movement_stmt = (
        select(movement_day, func.count(Movement.id))
        .where(Movement.created_at >= window_start)
        .group_by(movement_day)
    )
    if visible_category_ids is not None:
        movement_stmt = movement_stmt.join(Product, Product.id == Movement.product_id).where(
            *_product_filters(visible_category_ids)
        )
    movements_by_day = {_day_key(day): int(count) for day, count in db.execute(movement_stmt).all()}

    sale_day = func.date(Sale.sale_date)
    sales_by_day = {
        _day_key(day): (to_money(revenue or 0), int(count))
        for day, revenue, count in db.execute(
            select(sale_day, func.coalesce(func.sum(Sale.total_amount), 0), func.count(Sale.id))
            .where(Sale.sale_date >= window_start)
            .group_by(sale_day)
        ).all()
    }

    points = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        revenue, sale_count = sales_by_day.get(day.isoformat(), (ZERO_MONEY, 0))
        points.append(
            {
                "date": day,
                "movements": movements_by_day.get(day.isoformat(), 0),
                "revenue": float(revenue),
                "sales": sale_count,
            }
        )
    return points
