from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.permissions import require_admin
from stockflow.core.security_current import Principal
from stockflow.routers.auth import user_out
from stockflow.schemas.auth import CategoryVisibilityIn, UserCreateIn, UserListOut, UserOut, UserUpdateIn
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.user_service import (
    create_user,
    delete_user,
    get_user_or_404,
    list_users,
    set_category_visibility,
    update_user,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=UserOut,
    status_code=201,
    summary="Create user",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_user_endpoint(
    payload: UserCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    user = create_user(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        role=payload.role,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return user_out(db, user)


@router.get(
    "",
    response_model=UserListOut,
    summary="List users",
    responses=error_responses(401, 403, 500),
)
def list_users_endpoint(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    return UserListOut(items=[user_out(db, user) for user in list_users(db)])


@router.put(
    "/{user_id}/visibility",
    response_model=UserOut,
    summary="Set visible categories",
    description="Replaces the categories a VIEWER may read. An empty list hides every product.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def set_visibility(
    user_id: str,
    payload: CategoryVisibilityIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    set_category_visibility(
        db,
        user_id=user_id,
        category_ids=payload.category_ids,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return user_out(db, get_user_or_404(db, user_id))


@router.patch(
    "/{user_id}",
    response_model=UserOut,
    summary="Update user",
    description="Partial update of name, email, role, active flag or password. Admins cannot demote themselves.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_user_endpoint(
    user_id: str,
    payload: UserUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    user = update_user(
        db,
        user_id=user_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_id=principal.actor_id,
        audit=audit,
    )
    return user_out(db, user)


@router.delete(
    "/{user_id}",
    status_code=204,
    summary="Delete user",
    description="Refused for your own account and for users with recorded activity (deactivate those instead).",
    responses=error_responses(400, 401, 403, 404, 409, 500),
)
def delete_user_endpoint(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    delete_user(db, user_id=user_id, actor_id=principal.actor_id, audit=audit)
    return Response(status_code=204)
