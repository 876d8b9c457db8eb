from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from stockflow.core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from stockflow.core.security import hash_password, verify_password
from stockflow.db.transactions import run_in_transaction
from stockflow.models.audit_log import AuditTrail
from stockflow.models.category import Category, CategoryVisibility
from stockflow.models.loan import Loan
from stockflow.models.movement import Movement
from stockflow.models.product import Product
from stockflow.models.sales import Sale
from stockflow.models.user import ROLE_ADMIN, ROLE_VIEWER, ROLES, User
from stockflow.services.audit_service import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    AuditRecorder,
    record_audit,
)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(func.lower(User.email) == normalize_email(email))
    ).scalar_one_or_none()


def get_user_or_404(db: Session, user_id: str) -> User:
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return user


def has_any_user(db: Session) -> bool:
    return db.execute(select(User.id).limit(1)).first() is not None


def authenticate(db: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("User is inactive")
    return user


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    name: str | None,
    role: str = ROLE_VIEWER,
    actor_id: str | None = None,
    audit: AuditRecorder | None = None,
) -> User:
    role = (role or ROLE_VIEWER).strip().upper()
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")
    email = normalize_email(email)
    if get_user_by_email(db, email):
        raise ConflictError("Email already registered")

    def _create() -> User:
        user = User(
            email=email,
            name=(name or "").strip() or None,
            hashed_password=hash_password(password),
            role=role,
            is_active=True,
        )
        db.add(user)
        db.flush()
        return user

    user = run_in_transaction(db, _create, conflict_message="Email already registered")
    db.refresh(user)
    record_audit(audit, actor_id or user.id, ACTION_CREATE, "user", user.id, {"email": email, "role": role})
    return user


def register_first_admin(
    db: Session,
    *,
    email: str,
    password: str,
    name: str | None,
    audit: AuditRecorder | None = None,
) -> User:
    """Self-service registration is only open while no user exists; that user becomes ADMIN."""
    if has_any_user(db):
        raise UnauthorizedError("Registration is closed; ask an admin for an account", forbidden=True)
    return create_user(db, email=email, password=password, name=name, role=ROLE_ADMIN, audit=audit)


def list_users(db: Session) -> list[User]:
    return list(db.execute(select(User).order_by(User.created_at.asc())).scalars().all())


def visible_category_ids(db: Session, user_id: str) -> list[int]:
    return [
        int(category_id)
        for category_id in db.execute(
            select(CategoryVisibility.category_id)
            .where(CategoryVisibility.user_id == user_id)
            .order_by(CategoryVisibility.category_id.asc())
        ).scalars()
    ]


def set_category_visibility(
    db: Session,
    *,
    user_id: str,
    category_ids: list[int],
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> list[int]:
    """Replace the set of categories a viewer may read; an empty list hides every product."""
    get_user_or_404(db, user_id)
    wanted = sorted(set(category_ids))
    if wanted:
        found = set(db.execute(select(Category.id).where(Category.id.in_(wanted))).scalars().all())
        missing = [category_id for category_id in wanted if category_id not in found]
        if missing:
            raise NotFoundError(f"Categories not found: {', '.join(str(m) for m in missing)}")

    def _replace() -> None:
        db.execute(delete(CategoryVisibility).where(CategoryVisibility.user_id == user_id))
        for category_id in wanted:
            db.add(CategoryVisibility(user_id=user_id, category_id=category_id))
        db.flush()

    run_in_transaction(db, _replace)
    record_audit(audit, actor_id, ACTION_UPDATE, "user", user_id, {"visibleCategoryIds": wanted})
    return wanted


def update_user(
    db: Session,
    *,
    user_id: str,
    changes: dict[str, Any],
    actor_id: str,
    audit: AuditRecorder | None = None,
) -> User:
    """
    Apply a partial update. A new ``password`` is re-hashed; ``None`` values are ignored.

    Admins cannot demote or deactivate their own account.
    """
    user = get_user_or_404(db, user_id)
    values = {key: value for key, value in changes.items() if value is not None}

    if "email" in values:
        values["email"] = normalize_email(values["email"])
        existing = get_user_by_email(db, values["email"])
        if existing and existing.id != user.id:
            raise ConflictError("Email already registered")
    if "role" in values:
        values["role"] = str(values["role"]).strip().upper()
        if values["role"] not in ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")
    if "name" in values:
        values["name"] = str(values["name"]).strip() or None
    if user.id == actor_id:
        if values.get("role", user.role) != user.role:
            raise ValidationError("Cannot change the role of your own account")
        if values.get("is_active") is False:
            raise ValidationError("Cannot deactivate your own account")

    password = values.pop("password", None)

    def _update() -> User:
        for field, value in values.items():
            setattr(user, field, value)
        if password:
            user.hashed_password = hash_password(password)
        db.flush()
        return user

    run_in_transaction(db, _update, conflict_message="Email already registered")
    db.refresh(user)
    details = {key: value for key, value in values.items() if key in ("name", "email", "role", "is_active")}
    if password:
        details["passwordChanged"] = True
    record_audit(audit, actor_id, ACTION_UPDATE, "user", user.id, details)
    return user


def user_activity_count(db: Session, user_id: str) -> int:
    """Ledger and audit rows that reference the user as their actor."""
    counters = (
        select(func.count(Movement.id)).where(Movement.moved_by == user_id),
        select(func.count(Loan.id)).where(Loan.created_by == user_id),
        select(func.count(Sale.id)).where(Sale.created_by == user_id),
        select(func.count(Product.id)).where(Product.created_by == user_id),
        select(func.count(AuditTrail.id)).where(AuditTrail.actor_user_id == user_id),
    )
    return sum(int(db.execute(stmt).scalar_one()) for stmt in counters)


def delete_user(db: Session, *, user_id: str, actor_id: str, audit: AuditRecorder | None = None) -> None:
    if user_id == actor_id:
        raise ValidationError("Cannot delete your own account")
    user = get_user_or_404(db, user_id)
    if user_activity_count(db, user_id):
        raise ConflictError("User has recorded activity; deactivate the account instead")
    email, name = user.email, user.name

    def _delete() -> None:
        db.execute(delete(CategoryVisibility).where(CategoryVisibility.user_id == user_id))
        db.delete(user)
        db.flush()

    run_in_transaction(db, _delete, conflict_message="User has recorded activity; deactivate the account instead")
    record_audit(audit, actor_id, ACTION_DELETE, "user", user_id, {"email": email, "name": name})
