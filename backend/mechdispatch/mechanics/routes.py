import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mechdispatch.config import settings
from mechdispatch.database import get_db
from mechdispatch.dependencies import get_current_mechanic
from mechdispatch.errors import NotFound, Unauthorized, ValidationError
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.schemas.mechanic import MechanicResponse, MechanicUpdateRequest, NearbyMechanicResponse
from mechdispatch.services.matching import find_candidates
from mechdispatch.utils.rate_limit import LIST_RATE_LIMIT, WRITE_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()

_PRICE_FIELDS = {"hourly_rate", "monthly_subscription", "yearly_subscription"}


async def _load_profile(db: AsyncSession, mechanic_id: uuid.UUID) -> MechanicProfile:
    result = await db.execute(
        select(MechanicProfile)
        .where(MechanicProfile.id == mechanic_id)
        .options(selectinload(MechanicProfile.user))
        .execution_options(populate_existing=True)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise NotFound("Mechanic not found")
    return profile


def _require_own_profile(profile: MechanicProfile, mechanic_id: uuid.UUID) -> None:
    if profile.id != mechanic_id:
        raise Unauthorized("You can only modify your own profile")


# Static routes first (before /{mechanic_id})


@router.get("", response_model=ApiResponse[list[MechanicResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_mechanics(
    request: Request,
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
):
    result = await db.execute(
        select(MechanicProfile)
        .options(selectinload(MechanicProfile.user))
        .order_by(MechanicProfile.rating_avg.desc(), MechanicProfile.id)
        .limit(limit)
        .offset(offset)
    )
    return ApiResponse(data=[MechanicResponse.from_profile(p) for p in result.scalars().all()])


@router.get("/available", response_model=ApiResponse[list[MechanicResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_available_mechanics(
    request: Request,
    db: AsyncSession = Depends(get_db),
    specialty: str | None = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
):
    query = (
        select(MechanicProfile)
        .where(MechanicProfile.is_available.is_(True))
        .options(selectinload(MechanicProfile.user))
    )
    if specialty and specialty != settings.WILDCARD_SPECIALTY:
        query = query.where(MechanicProfile.specialty.in_([specialty, settings.WILDCARD_SPECIALTY]))
    result = await db.execute(
        query.order_by(MechanicProfile.rating_avg.desc(), MechanicProfile.id).limit(limit).offset(offset)
    )
    return ApiResponse(data=[MechanicResponse.from_profile(p) for p in result.scalars().all()])


@router.get("/nearby", response_model=ApiResponse[list[NearbyMechanicResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def nearby_mechanics(
    request: Request,
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: float | None = Query(None, gt=0),
    specialty: str | None = Query(None, max_length=50),
    db: AsyncSession = Depends(get_db),
):
    """Mechanics within ``radius`` km, nearest first. Busy mechanics are included and flagged."""
    radius_km = radius if radius is not None else settings.DEFAULT_SEARCH_RADIUS_KM
    if radius_km > settings.MAX_SEARCH_RADIUS_KM:
        raise ValidationError(f"radius must not exceed {settings.MAX_SEARCH_RADIUS_KM:g} km")

    candidates = await find_candidates(db, latitude, longitude, radius_km, specialty)
    data = [
        NearbyMechanicResponse.from_profile(c.mechanic, distance_km=c.distance_km)
        for c in candidates
    ]
    message = None if data else "No mechanics found in this area"
    return ApiResponse(message=message, data=data)


@router.get("/{mechanic_id}", response_model=ApiResponse[MechanicResponse])
async def get_mechanic(mechanic_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    profile = await _load_profile(db, mechanic_id)
    return ApiResponse(data=MechanicResponse.from_profile(profile))


@router.put("/{mechanic_id}", response_model=ApiResponse[MechanicResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def update_mechanic(
    request: Request,
    mechanic_id: uuid.UUID,
    body: MechanicUpdateRequest,
    mechanic: tuple[User, MechanicProfile] = Depends(get_current_mechanic),
    db: AsyncSession = Depends(get_db),
):
    """Update the caller's own profile. Existing bookings keep the price they were created with."""
    _, profile = mechanic
    _require_own_profile(profile, mechanic_id)

    # An explicit null on a price withdraws that tier; other fields ignore nulls
    changes = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field in _PRICE_FIELDS
    }
    for field, value in changes.items():
        setattr(profile, field, value)
    await db.flush()

    logger.info("mechanic_profile_updated", mechanic_id=str(profile.id), fields=sorted(changes))
    profile = await _load_profile(db, mechanic_id)
    return ApiResponse(message="Profile updated", data=MechanicResponse.from_profile(profile))


@router.put("/{mechanic_id}/availability", response_model=ApiResponse[MechanicResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def set_availability(
    request: Request,
    mechanic_id: uuid.UUID,
    available: bool = Query(...),
    mechanic: tuple[User, MechanicProfile] = Depends(get_current_mechanic),
    db: AsyncSession = Depends(get_db),
):
    _, profile = mechanic
    _require_own_profile(profile, mechanic_id)

    profile.is_available = available
    await db.flush()

    logger.info("mechanic_availability_changed", mechanic_id=str(profile.id), available=available)
    profile = await _load_profile(db, mechanic_id)
    return ApiResponse(data=MechanicResponse.from_profile(profile))
