import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.auth.service import create_access_token, hash_password_async, verify_password_async
from mechdispatch.config import settings
from mechdispatch.database import get_db
from mechdispatch.dependencies import get_actor, get_current_user, get_token_payload, token_expiry
from mechdispatch.metrics import USERS_REGISTERED
from mechdispatch.models.blacklisted_token import BlacklistedToken
from mechdispatch.models.enums import UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User
from mechdispatch.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.services.actor import Actor
from mechdispatch.utils.rate_limit import AUTH_RATE_LIMIT, limiter

# Verified against when the email is unknown so both failure paths cost one bcrypt check
_DUMMY_HASH = "$2b$12$LJ3m4ys3Lg2UxMHFSKDcOedTqJtFHSfVLO7GRFXlI0Xp9jHQvaFYe"

logger = structlog.get_logger()
router = APIRouter()


def _auth_response(user: User, mechanic_id=None) -> AuthResponse:
    return AuthResponse(
        token=create_access_token(str(user.id), UserRole(user.role).value),
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        mechanic_id=mechanic_id,
    )


@router.post("/register", response_model=ApiResponse[AuthResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(request: Request, response: Response, body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a customer or a mechanic and return an access token."""
    response.headers["Cache-Control"] = "no-store"
    email = body.email.lower()

    result = await db.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email is already registered")

    profile = None
    try:
        # User and profile are created together or not at all
        async with db.begin_nested():
            user = User(
                email=email,
                password_hash=await hash_password_async(body.password),
                role=body.role.value,
                name=body.name,
                phone=body.phone,
                address=body.address,
                latitude=body.latitude,
                longitude=body.longitude,
            )
            db.add(user)
            await db.flush()

            if body.role == UserRole.MECHANIC:
                profile = MechanicProfile(
                    user_id=user.id,
                    specialty=body.specialty or settings.WILDCARD_SPECIALTY,
                    hourly_rate=body.hourly_rate if body.hourly_rate is not None else settings.DEFAULT_HOURLY_RATE,
                    monthly_subscription=(
                        body.monthly_subscription
                        if body.monthly_subscription is not None
                        else settings.DEFAULT_MONTHLY_SUBSCRIPTION
                    ),
                    yearly_subscription=(
                        body.yearly_subscription
                        if body.yearly_subscription is not None
                        else settings.DEFAULT_YEARLY_SUBSCRIPTION
                    ),
                    latitude=body.latitude,
                    longitude=body.longitude,
                    is_available=True,
                )
                db.add(profile)
                await db.flush()
    except IntegrityError:
        # Email taken between the check and the insert
        logger.info("registration_race_condition")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email is already registered")

    USERS_REGISTERED.labels(role=body.role.value).inc()
    logger.info("user_registered", user_id=str(user.id), role=body.role.value)

    return ApiResponse(
        message="Registration successful",
        data=_auth_response(user, profile.id if profile else None),
    )


@router.post("/login", response_model=ApiResponse[AuthResponse])
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, response: Response, body: LoginRequest, db: AsyncSession = Depends(get_db)):
    response.headers["Cache-Control"] = "no-store"
    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if user is None:
        await verify_password_async(body.password, _DUMMY_HASH)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not await verify_password_async(body.password, user.password_hash):
        logger.info("login_failed", user_id=str(user.id))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    mechanic_id = None
    if user.role == UserRole.MECHANIC:
        profile_result = await db.execute(
            select(MechanicProfile.id).where(MechanicProfile.user_id == user.id)
        )
        mechanic_id = profile_result.scalar_one_or_none()

    logger.info("user_login", user_id=str(user.id))
    return ApiResponse(message="Login successful", data=_auth_response(user, mechanic_id))


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    request: Request,
    payload: dict = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db),
):
    """Revoke the bearer token for the rest of its lifetime."""
    jti = payload["jti"]
    db.add(BlacklistedToken(jti=jti, expires_at=token_expiry(payload)))
    await db.flush()

    logger.info("user_logged_out", jti=jti)
    return ApiResponse(message="Logged out")


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(
    user: User = Depends(get_current_user),
    actor: Actor = Depends(get_actor),
):
    data = UserResponse.model_validate(user).model_copy(update={"mechanic_id": actor.mechanic_id})
    return ApiResponse(data=data)
