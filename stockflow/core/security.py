from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt

from stockflow.core.config import settings

ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"

# bcrypt only reads the first 72 bytes; newer releases raise instead of truncating.
_BCRYPT_MAX_BYTES = 72


class TokenValidationError(ValueError):
    pass


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


def create_access_token(user_id: str, role: str, *, expires_delta: timedelta | None = None) -> str:
    """Signed bearer token carrying the user id (``sub``) and role claim."""
    now = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": user_id,
        "role": role,
        "type": TOKEN_TYPE_ACCESS,
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, *, expected_type: str | None = None) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if not payload.get("sub"):
        raise TokenValidationError("Invalid token subject")
    if expected_type and payload.get("type") != expected_type:
        raise TokenValidationError("Invalid token type")
    return payload
