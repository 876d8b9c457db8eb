import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.errors import NotFoundError
from stockflow.models.category import Category
from stockflow.models.product import Product

SKU_DIGITS = 3


def category_prefix(category: Category) -> str:
    if category.prefix and category.prefix.strip():
        return category.prefix.strip().upper()
    return category.name.strip()[:3].upper()


def format_sku(prefix: str, counter: int) -> str:
    return f"{prefix}-{counter:0{SKU_DIGITS}d}"


def next_sku(db: Session, category_id: int) -> str:
    """
    Next ``PREFIX-NNN`` for a category, one past the highest existing counter.

    Read-only and unlocked: two callers can get the same value, and the unique
    constraint on ``products.sku`` decides which insert wins.
    """
    category = db.execute(select(Category).where(Category.id == category_id)).scalar_one_or_none()
    if not category:
        raise NotFoundError("Category not found")

    prefix = category_prefix(category)
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    skus = db.execute(
        select(Product.sku).where(Product.sku.startswith(f"{prefix}-", autoescape=True))
    ).scalars().all()

    # Numeric max rather than string max so PREFIX-1000 sorts after PREFIX-999.
    highest = 0
    for sku in skus:
        match = pattern.match(sku)
        if match:
            highest = max(highest, int(match.group(1)))
    return format_sku(prefix, highest + 1)
