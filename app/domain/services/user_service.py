"""
User Service - Registration, login, password reset and profile management
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    create_reset_token,
    hash_password,
    verify_password,
    verify_token,
)
from app.core.config import settings
from app.core.exceptions import (
    InvalidCredentialsError,
    InvalidResetTokenError,
    UserAlreadyExistsError,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.core.validation import EmailValidator
from app.db.models.user import User, UserRole

logger = get_logger(__name__)

# Roles an admin may hand out when creating an account
ADMIN_ASSIGNABLE_ROLES = (UserRole.USER, UserRole.HR, UserRole.ADMIN)


def resolve_role(requested: Optional[UserRole | str], requester: Optional[User]) -> UserRole:
    """
    Work out the role a new account gets.

    Public registration and HR-created accounts are always ``user``. Admins
    and superadmins may assign user, hr or admin; superadmin is never
    assignable through the API.
    """
    if requester is None:
        return UserRole.USER
    if requester.role in (UserRole.ADMIN, UserRole.SUPERADMIN) and requested:
        try:
            role = UserRole(requested)
        except ValueError:
            return UserRole.USER
        if role in ADMIN_ASSIGNABLE_ROLES:
            return role
    return UserRole.USER


def _check_password(password: str) -> None:
    if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationException(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long",
            field="password",
        )


class UserService:
    """Service for user accounts"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == EmailValidator.normalize(email))
        )
        return result.scalar_one_or_none()

    async def list_users(self) -> list[User]:
        result = await self.db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return list(result.scalars().all())

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        role: Optional[UserRole | str] = None,
        requester: Optional[User] = None,
    ) -> User:
        """Create an account; the role is decided by resolve_role()"""
        _check_password(password)
        email = EmailValidator.normalize(email)
        if await self.get_by_email(email):
            raise UserAlreadyExistsError(email)

        assigned_role = resolve_role(role, requester)
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=assigned_role,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info(
            "User registered",
            extra_data={
                "user_id": user.id,
                "role": assigned_role.value,
                "created_by": requester.id if requester else None,
            },
        )
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.warning(
                "Login failed",
                extra_data={"email": EmailValidator.mask(email)},
            )
            raise InvalidCredentialsError()

        user.last_active = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def issue_reset_token(self, email: str) -> tuple[User, str]:
        """Create a password reset token and log the reset link"""
        user = await self.get_by_email(email)
        if not user:
            raise UserNotFoundError(EmailValidator.mask(email))

        token = create_reset_token(user.id, user.role.value)
        logger.info(
            "Password reset link generated",
            extra_data={
                "user_id": user.id,
                "link": f"{settings.FRONTEND_URL.rstrip('/')}/reset-password?token=<redacted>",
            },
        )
        return user, token

    async def reset_password(self, token: str, new_password: str) -> User:
        payload = verify_token(token, purpose="reset")
        if payload is None:
            raise InvalidResetTokenError()
        _check_password(new_password)

        user = await self.get_user(payload.user_id)
        user.password_hash = hash_password(new_password)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info("Password reset", extra_data={"user_id": user.id})
        return user

    async def update_profile(self, user_id: int, name: str) -> User:
        """Only the display name can be changed here"""
        user = await self.get_user(user_id)
        user.name = name
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Profile updated", extra_data={"user_id": user_id})
        return user

    async def delete_user(self, user_id: int) -> None:
        """Delete a user together with their ledger rows"""
        user = await self.get_user(user_id)
        await self.db.delete(user)
        await self.db.commit()
        logger.info("User deleted", extra_data={"user_id": user_id})
