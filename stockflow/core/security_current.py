from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.deps import get_db
from stockflow.core.errors import UnauthorizedError
from stockflow.core.security import TokenValidationError, decode_token
from stockflow.models.user import ROLE_ADMIN, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


@dataclass(frozen=True)
class Principal:
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def get_current_user(token: str | None = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    if not token:
        raise UnauthorizedError("Not authenticated")
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise UnauthorizedError(str(exc)) from exc

    user_id = payload.get("sub")
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        raise UnauthorizedError("User not found")
    return user


def get_current_principal(user: User = Depends(get_current_user)) -> Principal:
    # Role is read from the user row so a demotion takes effect before token expiry.
    return Principal(actor_id=user.id, role=(user.role or "").upper())
