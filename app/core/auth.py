"""
Authentication primitives: password hashing and JWT tokens.

Three token kinds are issued:
1. access token - short lived, sent as ``Authorization: Bearer`` on every call
2. session token - long lived, signed with a separate secret
3. reset token - single purpose, lets the holder set a new password
"""
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import jwt as pyjwt
from passlib.context import CryptContext
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TokenPurpose = Literal["access", "session", "reset"]


class TokenPayload(BaseModel):
    """Claims carried by every token"""
    user_id: int
    role: str
    purpose: TokenPurpose = "access"
    exp: int  # Unix timestamp


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _secret_for(purpose: TokenPurpose) -> str:
    if purpose == "session":
        return settings.session_secret_key
    return settings.JWT_SECRET_KEY


def _encode(user_id: int, role: str, purpose: TokenPurpose, lifetime: timedelta) -> str:
    secret = _secret_for(purpose)
    if not secret:
        raise ValueError("JWT_SECRET_KEY is not set, cannot issue tokens")
    expire = datetime.now(timezone.utc) + lifetime
    payload = {
        "user_id": user_id,
        "role": role,
        "purpose": purpose,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: int, role: str) -> str:
    token = _encode(
        user_id,
        role,
        "access",
        timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    logger.info("Access token created", extra_data={"user_id": user_id, "role": role})
    return token


def create_session_token(user_id: int, role: str) -> str:
    return _encode(
        user_id,
        role,
        "session",
        timedelta(days=settings.JWT_SESSION_TOKEN_EXPIRE_DAYS),
    )


def create_reset_token(user_id: int, role: str) -> str:
    return _encode(
        user_id,
        role,
        "reset",
        timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
    )


def verify_token(token: str, purpose: TokenPurpose = "access") -> Optional[TokenPayload]:
    """Decode a token of the given purpose; None when invalid, expired or of another purpose"""
    secret = _secret_for(purpose)
    if not secret:
        logger.error("JWT secret is empty, tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
        data = TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired", extra_data={"purpose": purpose})
        return None
    except (KeyError, ValueError, TypeError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None

    if data.purpose != purpose:
        logger.warning(
            "JWT token used for the wrong purpose",
            extra_data={"expected": purpose, "actual": data.purpose},
        )
        return None
    return data
