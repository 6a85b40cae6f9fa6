"""Bearer token authentication and role gating for API routes"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import jwt

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(user_id: uuid.UUID, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a signed token whose subject is the user id"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return uuid.UUID(payload["sub"])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.warning(f"Rejected access token: {e}")
        raise AuthenticationError("Invalid authentication credentials") from e


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the bearer token to a stored user"""
    if credentials is None:
        raise AuthenticationError("Authorization header missing")

    user_id = decode_access_token(credentials.credentials)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise AuthenticationError("User not found")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory that only lets the given roles through"""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            allowed = ", ".join(role.value.lower() for role in roles)
            raise ForbiddenError(f"Access restricted to: {allowed}")
        return current_user

    return checker
