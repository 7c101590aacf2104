import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.database import get_db
from mechdispatch.dependencies import get_actor
from mechdispatch.errors import Unauthorized
from mechdispatch.schemas.booking import BookingCreateRequest, BookingResponse, CompleteRequest, RateRequest
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.services.actor import Actor
from mechdispatch.services.ledger import BookingLedger
from mechdispatch.utils.rate_limit import LIST_RATE_LIMIT, WRITE_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


def _one(booking, message: str | None = None) -> ApiResponse[BookingResponse]:
    return ApiResponse(message=message, data=BookingResponse.model_validate(booking))


def _many(bookings) -> ApiResponse[list[BookingResponse]]:
    return ApiResponse(data=[BookingResponse.model_validate(b) for b in bookings])


@router.post("", response_model=ApiResponse[BookingResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_RATE_LIMIT)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a PENDING booking addressed to ``body.mechanic_id`` (customers only)."""
    booking = await BookingLedger(db).create(actor, body)
    return _one(booking, "Booking created successfully")


@router.get("", response_model=ApiResponse[list[BookingResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_bookings(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Bookings the caller takes part in, newest first."""
    return _many(await BookingLedger(db).list_for(actor, limit, offset))


@router.get("/customer/{customer_id}", response_model=ApiResponse[list[BookingResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_customer_bookings(
    request: Request,
    customer_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    if customer_id != actor.user_id:
        raise Unauthorized("You can only list your own bookings")
    return _many(await BookingLedger(db).list_for_customer(customer_id, limit, offset))


@router.get("/mechanic/{mechanic_id}", response_model=ApiResponse[list[BookingResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_mechanic_bookings(
    request: Request,
    mechanic_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    if mechanic_id != actor.mechanic_id:
        raise Unauthorized("You can only list your own bookings")
    return _many(await BookingLedger(db).list_for_mechanic(mechanic_id, limit, offset))


@router.get("/{booking_id}", response_model=ApiResponse[BookingResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_booking(
    request: Request,
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get a single booking. Only its customer and its mechanic can see it."""
    return _one(await BookingLedger(db).get_for(booking_id, actor))


@router.put("/{booking_id}/accept", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def accept_booking(
    request: Request,
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return _one(await BookingLedger(db).accept(booking_id, actor), "Booking accepted")


@router.put("/{booking_id}/reject", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def reject_booking(
    request: Request,
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return _one(await BookingLedger(db).reject(booking_id, actor), "Booking rejected")


@router.put("/{booking_id}/start", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def start_booking(
    request: Request,
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return _one(await BookingLedger(db).start(booking_id, actor), "Work started")


@router.put("/{booking_id}/complete", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def complete_booking(
    request: Request,
    booking_id: uuid.UUID,
    body: CompleteRequest | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    duration = body.actual_duration_minutes if body else None
    return _one(await BookingLedger(db).complete(booking_id, actor, duration), "Booking completed")


@router.put("/{booking_id}/cancel", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def cancel_booking(
    request: Request,
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a PENDING or ACCEPTED booking (its customer only)."""
    return _one(await BookingLedger(db).cancel(booking_id, actor), "Booking cancelled")


@router.put("/{booking_id}/rate", response_model=ApiResponse[BookingResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def rate_booking(
    request: Request,
    booking_id: uuid.UUID,
    body: RateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await BookingLedger(db).rate(booking_id, actor, body.rating, body.feedback)
    return _one(booking, "Thank you for your feedback")
