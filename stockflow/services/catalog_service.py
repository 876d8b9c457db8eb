from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import ConflictError, NotFoundError, ValidationError
from stockflow.db.transactions import run_in_transaction
from stockflow.models.category import Category, CategoryVisibility
from stockflow.models.product import Product
from stockflow.services.audit_service import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    AuditRecorder,
    record_audit,
)

PREFIX_MAX_LENGTH = 10


@dataclass(frozen=True)
class CategoryRow:
    category: Category
    product_count: int


def normalize_prefix(prefix: str | None) -> str:
    cleaned = (prefix or "").strip().upper()
    if not cleaned:
        raise ValidationError("Category prefix is required")
    if len(cleaned) > PREFIX_MAX_LENGTH:
        raise ValidationError(f"Category prefix must be at most {PREFIX_MAX_LENGTH} characters")
    return cleaned


def get_category_or_404(db: Session, category_id: int) -> Category:
    category = db.execute(select(Category).where(Category.id == category_id)).scalar_one_or_none()
    if not category:
        raise NotFoundError("Category not found")
    return category


def _ensure_unique(db: Session, *, name: str | None, prefix: str | None, exclude_id: int | None = None) -> None:
    if name is not None:
        stmt = select(Category.id).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if db.execute(stmt).first():
            raise ConflictError(f'Category "{name}" already exists')
    if prefix is not None:
        stmt = select(Category.id).where(Category.prefix == prefix)
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if db.execute(stmt).first():
            raise ConflictError(f'Prefix "{prefix}" is already used by another category')


def _ensure_parent(db: Session, *, category_id: int | None, parent_id: int | None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ValidationError("A category cannot be its own parent")
    parent = get_category_or_404(db, parent_id)
    seen = {category_id} if category_id is not None else set()
    while parent.parent_id is not None:
        if parent.parent_id in seen:
            raise ValidationError("Category hierarchy cannot contain cycles")
        seen.add(parent.id)
        parent = get_category_or_404(db, parent.parent_id)


def list_categories(db: Session) -> list[CategoryRow]:
    counts = (
        select(Product.category_id, func.count(Product.id).label("product_count"))
        .group_by(Product.category_id)
        .subquery()
    )
    rows = db.execute(
        select(Category, func.coalesce(counts.c.product_count, 0))
        .outerjoin(counts, counts.c.category_id == Category.id)
        .order_by(Category.name.asc())
    ).all()
    return [CategoryRow(category=category, product_count=int(count)) for category, count in rows]


def category_product_count(db: Session, category_id: int) -> int:
    return int(db.execute(select(func.count(Product.id)).where(Product.category_id == category_id)).scalar_one())


def create_category(
    db: Session,
    *,
    name: str,
    prefix: str,
    actor_id: str,
    description: str | None = None,
    parent_id: int | None = None,
    audit: AuditRecorder | None = None,
) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    prefix = normalize_prefix(prefix)
    _ensure_unique(db, name=name, prefix=prefix)
    _ensure_parent(db, category_id=None, parent_id=parent_id)

    def _create() -> Category:
        category = Category(name=name, prefix=prefix, description=description, parent_id=parent_id)
        db.add(category)
        db.flush()
        return category

    category = run_in_transaction(db, _create, conflict_message="Category name or prefix already exists")
    db.refresh(category)
    record_audit(audit, actor_id, ACTION_CREATE, "category", category.id, {"name": name, "prefix": prefix})
    return category


def update_category(
    db: Session,
    *,
    category_id: int,
    changes: dict[str, Any],
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> Category:
    category = get_category_or_404(db, category_id)
    changes = dict(changes)
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValidationError("Category name is required")
    if "prefix" in changes:
        changes["prefix"] = normalize_prefix(changes["prefix"])
    _ensure_unique(db, name=changes.get("name"), prefix=changes.get("prefix"), exclude_id=category.id)
    if "parent_id" in changes:
        _ensure_parent(db, category_id=category.id, parent_id=changes["parent_id"])

    def _update() -> None:
        for field in ("name", "prefix", "description", "parent_id"):
            if field in changes:
                setattr(category, field, changes[field])
        db.flush()

    run_in_transaction(db, _update, conflict_message="Category name or prefix already exists")
    db.refresh(category)
    record_audit(audit, actor_id, ACTION_UPDATE, "category", category.id, changes)
    return category


def delete_category(db: Session, *, category_id: int, actor_id: str, audit: AuditRecorder | None = None) -> None:
    category = get_category_or_404(db, category_id)
    product_count = category_product_count(db, category_id)
    if product_count:
        raise ConflictError(f"Cannot delete category with {product_count} products")
    children = int(db.execute(select(func.count(Category.id)).where(Category.parent_id == category_id)).scalar_one())
    if children:
        raise ConflictError(f"Cannot delete category with {children} sub-categories")
    name = category.name

    def _delete() -> None:
        for row in db.execute(
            select(CategoryVisibility).where(CategoryVisibility.category_id == category_id)
        ).scalars():
            db.delete(row)
        db.delete(category)

    run_in_transaction(db, _delete)
    record_audit(audit, actor_id, ACTION_DELETE, "category", category_id, {"name": name})
