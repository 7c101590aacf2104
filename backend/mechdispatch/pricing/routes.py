import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.database import get_db
from mechdispatch.errors import NotFound
from mechdispatch.models.enums import SubscriptionType
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.schemas.pricing import PriceQuote, PricingPlansResponse
from mechdispatch.services.pricing import quote_all, resolve_price
from mechdispatch.utils.rate_limit import LIST_RATE_LIMIT, limiter

router = APIRouter()


async def _get_mechanic(db: AsyncSession, mechanic_id: uuid.UUID) -> MechanicProfile:
    mechanic = await db.get(MechanicProfile, mechanic_id)
    if mechanic is None:
        raise NotFound("Mechanic not found")
    return mechanic


@router.get("/mechanics/{mechanic_id}", response_model=ApiResponse[PricingPlansResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def pricing_plans(request: Request, mechanic_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Every subscription tier the mechanic offers, with its current price."""
    mechanic = await _get_mechanic(db, mechanic_id)
    return ApiResponse(
        data=PricingPlansResponse(
            mechanic_id=mechanic.id,
            specialty=mechanic.specialty,
            plans=quote_all(mechanic),
        )
    )


@router.get("/quote", response_model=ApiResponse[PriceQuote])
@limiter.limit(LIST_RATE_LIMIT)
async def price_quote(
    request: Request,
    mechanic_id: uuid.UUID = Query(...),
    subscription_type: SubscriptionType = Query(...),
    service_type: str | None = Query(None, max_length=50),
    db: AsyncSession = Depends(get_db),
):
    """The price a booking would be created with right now. 422 when the tier is not offered."""
    mechanic = await _get_mechanic(db, mechanic_id)
    return ApiResponse(
        data=PriceQuote(
            mechanic_id=mechanic.id,
            subscription_type=subscription_type,
            service_type=service_type,
            price=resolve_price(mechanic, subscription_type, service_type),
        )
    )
