from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.security import create_access_token
from stockflow.core.security_current import get_current_user
from stockflow.models.user import User
from stockflow.schemas.auth import LoginIn, TokenOut, UserCreateIn, UserOut
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.user_service import authenticate, register_first_admin, visible_category_ids

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_out(user: User) -> TokenOut:
    return TokenOut(access_token=create_access_token(user.id, user.role), role=user.role)


def user_out(db: Session, user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        is_active=user.is_active,
        visible_category_ids=visible_category_ids(db, user.id),
        created_at=user.created_at,
    )


@router.post(
    "/register",
    response_model=UserOut,
    status_code=201,
    summary="Register the first admin",
    description="Only open while no user exists. Later accounts are created by an admin via `POST /users`.",
    responses=error_responses(400, 403, 409, 422, 500),
)
def register(
    payload: UserCreateIn,
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    user = register_first_admin(db, email=payload.email, password=payload.password, name=payload.name, audit=audit)
    return user_out(db, user)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password login",
    description="Form login used by the Swagger **Authorize** button; `username` is the email.",
    responses=error_responses(401, 422, 500),
)
def token(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    return _token_out(authenticate(db, email=form.username, password=form.password))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="JSON login",
    responses=error_responses(401, 422, 500),
)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    return _token_out(authenticate(db, email=payload.email, password=payload.password))


@router.get(
    "/me",
    response_model=UserOut,
    summary="Current user",
    responses=error_responses(401, 500),
)
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_out(db, user)
