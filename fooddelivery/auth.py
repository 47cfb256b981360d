"""
Authentication and authorization utilities for the Orders service.

Validates JWT tokens issued by the marketplace's account service and
exposes role-gating dependencies. Relationship checks (who owns which
order) live in ``lifecycle``.
"""
import logging
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from .config import SECRET_KEY, ALGORITHM

logger = logging.getLogger(__name__)

ROLES = ("customer", "restaurant", "rider", "admin")

# Security scheme for JWT bearer tokens
security = HTTPBearer()


class CurrentUser(BaseModel):
    """Current authenticated user information."""
    id: int
    email: str
    role: str
    token: str


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)

    Returns:
        Current authenticated user information

    Raises:
        HTTPException: 401 if token is invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str: str = payload.get("sub")
        email: str = payload.get("email")
        role: str = payload.get("role")

        if user_id_str is None or email is None or role not in ROLES:
            raise credentials_exception

        user_id = int(user_id_str)
        return CurrentUser(id=user_id, email=email, role=role, token=token)
    except (JWTError, ValueError) as e:
        logger.error(f"JWT validation error: {e}")
        raise credentials_exception


def require_roles(*roles: str):
    """
    Build a FastAPI dependency that only lets the given roles through.

    Example:
        current_user: CurrentUser = Depends(require_roles("rider"))
    """
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}"
            )
        return current_user

    return dependency


require_admin = require_roles("admin")
