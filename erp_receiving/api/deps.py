from dataclasses import dataclass
from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.database import get_db
from erp_receiving.core.security import verify_access_token


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()

ADMIN_DEPARTMENT = "admin"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Actor taken from the access token. Users live in the identity service."""
    id: uuid.UUID
    name: Optional[str] = None
    department: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.department == ADMIN_DEPARTMENT


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthenticatedUser:
    """
    Dependency to get the current authenticated user.
    Validates the JWT token and builds the actor from its claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        logger.warning(f"Invalid user_id in token: {payload['sub']}")
        raise credentials_exception

    return AuthenticatedUser(
        id=user_id,
        name=payload.get("name"),
        department=payload.get("department"),
    )


def require_department(*departments: str):
    """
    Dependency factory to restrict a route to departments. Admin always passes.

    Usage:
        @router.post("/", dependencies=[Depends(require_department("inventory"))])
        async def receive():
            ...
    """
    async def department_dependency(
        user: Annotated[AuthenticatedUser, Depends(get_current_user)]
    ):
        if user.is_admin or user.department in departments:
            return True
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied. Required department: {', '.join(departments)}"
        )

    return department_dependency


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
DB = Annotated[AsyncSession, Depends(get_db)]
