"""
User API Routes - Registration, login, password reset, profile, administration
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_user, require_roles
from app.core.auth import create_access_token, create_session_token, verify_token
from app.core.logging import get_logger
from app.core.validation import email_validator, name_validator
from app.db.database import get_db
from app.db.models.user import STAFF_ROLES, User, UserRole
from app.domain.services.user_service import UserService

logger = get_logger(__name__)

router = APIRouter()


class UserResponse(BaseModel):
    """Public view of a user; the password hash never leaves the service"""
    id: int
    name: str
    email: str
    role: UserRole
    profile_picture: str
    cover_picture: str
    wallet_balance: float
    total_deposited: float
    total_recovered: float
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return name_validator(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return email_validator(v)


class CreateUserRequest(RegisterRequest):
    role: Optional[UserRole] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class RefreshRequest(BaseModel):
    session_token: str


class ProfileUpdate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return name_validator(v)


class TokenResponse(BaseModel):
    token: str
    session_token: str


class LoginResponse(BaseModel):
    access_token: str
    session_token: str
    user: UserResponse


class UserMessageResponse(BaseModel):
    message: str
    user: UserResponse


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Self-registration",
    description="Public. The new account always gets role `user`.",
    responses={400: {"description": "E-mail already registered"}},
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    service = UserService(db)
    user = await service.register(body.name, body.email, body.password)
    return TokenResponse(
        token=create_access_token(user.id, user.role.value),
        session_token=create_session_token(user.id, user.role.value),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Log in with e-mail and password",
    responses={401: {"description": "Invalid credentials"}},
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    service = UserService(db)
    user = await service.authenticate(body.email, body.password)
    return LoginResponse(
        access_token=create_access_token(user.id, user.role.value),
        session_token=create_session_token(user.id, user.role.value),
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/refresh",
    summary="Exchange a session token for a new access token",
    responses={401: {"description": "Session token invalid or expired"}},
)
async def refresh(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    payload = verify_token(body.session_token, purpose="session")
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session token invalid or expired",
        )
    # role comes from the database in case it changed since login
    user = await UserService(db).get_user(payload.user_id)
    return {"access_token": create_access_token(user.id, user.role.value)}


@router.post(
    "/forgot-password",
    summary="Generate a password reset token",
    responses={404: {"description": "No account with this e-mail"}},
)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    service = UserService(db)
    _, token = await service.issue_reset_token(body.email)
    return {"message": "Password reset link generated", "token": token}


@router.post(
    "/reset-password",
    summary="Set a new password with a reset token",
    responses={400: {"description": "Invalid or expired token"}},
)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    service = UserService(db)
    await service.reset_password(body.token, body.new_password)
    return {"message": "Password updated successfully"}


@router.get("/me", response_model=UserResponse, summary="Current user's profile and wallet")
async def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.patch(
    "/profile",
    response_model=UserMessageResponse,
    summary="Update own profile",
    description="Only the name can be changed.",
)
async def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserMessageResponse:
    user = await UserService(db).update_profile(current_user.id, body.name)
    return UserMessageResponse(
        message="Profile updated successfully",
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/create",
    response_model=UserMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user account (staff)",
    description=(
        "HR creates `user` accounts only. Admin and superadmin may assign "
        "`user`, `hr` or `admin`."
    ),
)
async def create_user(
    body: CreateUserRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> UserMessageResponse:
    user = await UserService(db).register(
        body.name,
        body.email,
        body.password,
        role=body.role,
        requester=current_user,
    )
    return UserMessageResponse(
        message="User created successfully",
        user=UserResponse.model_validate(user),
    )


@router.get(
    "/all/list",
    response_model=List[UserResponse],
    summary="List all users (staff)",
)
async def list_users(
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> List[UserResponse]:
    users = await UserService(db).list_users()
    return [UserResponse.model_validate(u) for u in users]


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get a user by id (staff)",
    responses={404: {"description": "User not found"}},
)
async def get_user(
    user_id: int,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await UserService(db).get_user(user_id)
    return UserResponse.model_validate(user)


@router.delete(
    "/delete/{user_id}",
    summary="Delete a user and their ledger (admin)",
    responses={404: {"description": "User not found"}},
)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.SUPERADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    await UserService(db).delete_user(user_id)
    logger.info(
        "User deleted by admin",
        extra_data={"user_id": user_id, "deleted_by": current_user.id},
    )
    return {"message": "User deleted successfully"}
