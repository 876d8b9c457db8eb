import pytest
from sqlalchemy import select

from stockflow.core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from stockflow.models.audit_log import AuditTrail
from stockflow.models.category import CategoryVisibility
from stockflow.models.user import User
from stockflow.services.audit_service import ACTION_DELETE, ACTION_UPDATE, AuditRecorder
from stockflow.services.product_service import ProductDraft, create_product
from stockflow.services.user_service import (
    authenticate,
    create_user,
    delete_user,
    set_category_visibility,
    update_user,
    user_activity_count,
)


@pytest.fixture()
def viewer(db, admin):
    return create_user(db, email="viewer@example.com", password="password123", name="Viewer", actor_id=admin.id)


def test_update_user_changes_fields_and_rehashes_password(db, session_local, admin, viewer):
    audit = AuditRecorder(session_local)

    user = update_user(
        db,
        user_id=viewer.id,
        changes={"name": " Sari ", "email": "SARI@Example.com", "role": "admin", "password": "rahasia-baru"},
        actor_id=admin.id,
        audit=audit,
    )

    assert (user.name, user.email, user.role) == ("Sari", "sari@example.com", "ADMIN")
    assert authenticate(db, email="sari@example.com", password="rahasia-baru").id == viewer.id
    with pytest.raises(UnauthorizedError):
        authenticate(db, email="sari@example.com", password="password123")

    entry = db.execute(select(AuditTrail).where(AuditTrail.action == ACTION_UPDATE)).scalar_one()
    assert entry.entity_id == viewer.id
    assert entry.details["passwordChanged"] is True
    assert "password" not in entry.details


def test_update_user_ignores_missing_values(db, admin, viewer):
    user = update_user(db, user_id=viewer.id, changes={"name": None, "is_active": False}, actor_id=admin.id)
    assert user.name == "Viewer"
    assert user.is_active is False
    with pytest.raises(UnauthorizedError, match="inactive"):
        authenticate(db, email="viewer@example.com", password="password123")


def test_update_user_rejects_taken_email_and_unknown_role(db, admin, viewer):
    with pytest.raises(ConflictError):
        update_user(db, user_id=viewer.id, changes={"email": "admin@example.com"}, actor_id=admin.id)
    with pytest.raises(ValidationError):
        update_user(db, user_id=viewer.id, changes={"role": "OWNER"}, actor_id=admin.id)
    with pytest.raises(NotFoundError):
        update_user(db, user_id="missing", changes={"name": "X"}, actor_id=admin.id)


def test_admin_cannot_demote_or_deactivate_self(db, admin):
    with pytest.raises(ValidationError, match="role of your own account"):
        update_user(db, user_id=admin.id, changes={"role": "VIEWER"}, actor_id=admin.id)
    with pytest.raises(ValidationError, match="deactivate your own account"):
        update_user(db, user_id=admin.id, changes={"is_active": False}, actor_id=admin.id)

    same = update_user(db, user_id=admin.id, changes={"role": "ADMIN", "name": "Boss"}, actor_id=admin.id)
    assert same.name == "Boss"


def test_delete_user_removes_visibility_grants(db, session_local, admin, viewer, make_product):
    product = make_product()
    viewer_id = viewer.id
    set_category_visibility(db, user_id=viewer_id, category_ids=[product.category_id], actor_id=admin.id)

    delete_user(db, user_id=viewer_id, actor_id=admin.id, audit=AuditRecorder(session_local))

    assert db.get(User, viewer_id) is None
    assert db.execute(select(CategoryVisibility)).scalars().all() == []
    entry = db.execute(select(AuditTrail).where(AuditTrail.action == ACTION_DELETE)).scalar_one()
    assert entry.details == {"email": "viewer@example.com", "name": "Viewer"}


def test_delete_user_refuses_self_and_users_with_history(db, admin, make_product):
    with pytest.raises(ValidationError, match="Cannot delete your own account"):
        delete_user(db, user_id=admin.id, actor_id=admin.id)

    clerk = create_user(db, email="clerk@example.com", password="password123", name="Clerk", role="ADMIN")
    category_id = make_product().category_id
    create_product(db, draft=ProductDraft(name="Lampu", category_id=category_id, current_stock=3), actor_id=clerk.id)
    assert user_activity_count(db, clerk.id) > 0

    with pytest.raises(ConflictError, match="deactivate"):
        delete_user(db, user_id=clerk.id, actor_id=admin.id)
    assert db.get(User, clerk.id) is not None

    with pytest.raises(NotFoundError):
        delete_user(db, user_id="missing", actor_id=admin.id)
