"""
FastAPI dependencies for authentication and role gates

Usage:
    @router.post("/deposit")
    async def deposit(
        current_user: User = Depends(require_roles(UserRole.HR, UserRole.ADMIN)),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_token
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.user import User, UserRole

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def _resolve_user(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncSession,
) -> Optional[User]:
    if credentials is None or not credentials.credentials:
        return None

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()
    if not user:
        logger.warning(
            "Token for a user that no longer exists",
            extra_data={"user_id": token_data.user_id},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, user not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to a User.

    401 when the token is missing, invalid, expired, or its user is gone.
    The role is read from the database, not from the token, so a role change
    takes effect immediately.
    """
    user = await _resolve_user(credentials, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory: the current user must hold one of ``roles`` (403 otherwise)"""
    allowed = frozenset(roles)

    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            logger.warning(
                "Access denied by role",
                extra_data={
                    "user_id": current_user.id,
                    "role": current_user.role.value,
                    "allowed": sorted(r.value for r in allowed),
                },
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return current_user

    return _check
