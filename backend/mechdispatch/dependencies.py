import uuid
from datetime import datetime, timezone

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.auth.service import decode_access_token
from mechdispatch.database import get_db
from mechdispatch.models.blacklisted_token import BlacklistedToken
from mechdispatch.models.enums import UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User
from mechdispatch.services.actor import Actor

logger = structlog.get_logger()
security = HTTPBearer()


def _unauthenticated(detail: str = "Invalid authentication token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Verified claims of the bearer token. Revoked (logged out) tokens are refused."""
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise _unauthenticated()

    jti = payload["jti"]
    # TODO: cache the blacklist in Redis once token lookups show up in request latency
    blacklisted = await db.execute(select(BlacklistedToken.id).where(BlacklistedToken.jti == jti))
    if blacklisted.scalar_one_or_none() is not None:
        logger.warning("blacklisted_token_used", jti=jti, user_id=str(payload.get("sub")))
        raise _unauthenticated("Token has been revoked")
    return payload


async def get_current_user(
    payload: dict = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise _unauthenticated()

    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise _unauthenticated("User not found")
    return user


async def get_actor(
    payload: dict = Depends(get_token_payload),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Session context handed to every guarded booking operation."""
    mechanic_id = None
    if user.role == UserRole.MECHANIC:
        result = await db.execute(
            select(MechanicProfile.id).where(MechanicProfile.user_id == user.id)
        )
        mechanic_id = result.scalar_one_or_none()
    return Actor(
        user_id=user.id,
        role=UserRole(user.role),
        mechanic_id=mechanic_id,
        token_jti=payload["jti"],
    )


async def get_current_mechanic(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[User, MechanicProfile]:
    """Current user and their mechanic profile; 403 for customers."""
    if user.role != UserRole.MECHANIC:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only mechanics can access this resource",
        )

    result = await db.execute(
        select(MechanicProfile).where(MechanicProfile.user_id == user.id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Mechanic profile not found",
        )
    return user, profile


def token_expiry(payload: dict) -> datetime:
    exp = payload.get("exp")
    return datetime.fromtimestamp(exp, tz=timezone.utc) if exp else datetime.now(timezone.utc)
