from collections.abc import Callable

from fastapi import Depends

from stockflow.core.errors import UnauthorizedError
from stockflow.core.security_current import Principal, get_current_principal
from stockflow.models.user import ROLE_ADMIN, ROLES


def require_roles(*allowed_roles: str) -> Callable[[Principal], Principal]:
    normalized_allowed = {role.strip().upper() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")
    unknown = normalized_allowed - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown roles: {', '.join(sorted(unknown))}")

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in normalized_allowed:
            raise UnauthorizedError("Insufficient role for this action", forbidden=True)
        return principal

    return dependency


require_admin = require_roles(ROLE_ADMIN)
require_any_role = require_roles(*ROLES)
