import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mechdispatch.errors import InvalidState, InvalidTransition, NotFound, Unauthorized, ValidationError
from mechdispatch.metrics import BOOKING_TRANSITION_CONFLICTS, BOOKING_TRANSITIONS, BOOKINGS_CREATED, BOOKINGS_RATED
from mechdispatch.models.booking import Booking
from mechdispatch.models.enums import BookingStatus, NotificationType, UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User
from mechdispatch.schemas.booking import BookingCreateRequest
from mechdispatch.services.actor import Actor
from mechdispatch.services.notifications import create_notification
from mechdispatch.services.pricing import resolve_price
from mechdispatch.utils.booking_state import sources_for, validate_transition

logger = structlog.get_logger()

# (title, body) of the notification sent to the other party after each action
_NOTICES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.BOOKING_CREATED: ("New booking request", "A customer has requested your services."),
    NotificationType.BOOKING_ACCEPTED: ("Booking accepted", "Your mechanic has accepted the booking."),
    NotificationType.BOOKING_REJECTED: ("Booking rejected", "The mechanic has declined your booking."),
    NotificationType.BOOKING_STARTED: ("Work started", "Your mechanic has started working on your vehicle."),
    NotificationType.BOOKING_COMPLETED: ("Work completed", "Your booking is complete. You can now rate it."),
    NotificationType.BOOKING_CANCELLED: ("Booking cancelled", "The customer has cancelled the booking."),
    NotificationType.BOOKING_RATED: ("New rating", "A customer has rated your work."),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BookingLedger:
    """Owns booking records and the status state machine.

    Every transition is a single conditional UPDATE on (id, current status,
    actor guard). When two callers race on the same booking exactly one
    UPDATE matches a row; the loser re-reads the booking to find out why and
    gets a typed error. Writes join the caller's transaction and are flushed,
    never committed, here.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, booking_id: uuid.UUID) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .options(selectinload(Booking.mechanic))
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    async def get_for(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        """A booking as seen by one of its two parties."""
        booking = await self.get(booking_id)
        if booking.customer_id != actor.user_id and booking.mechanic_id != actor.mechanic_id:
            raise Unauthorized("Not your booking")
        return booking

    async def list_for_customer(self, customer_id: uuid.UUID, limit: int = 50, offset: int = 0) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.customer_id == customer_id)
            .order_by(Booking.created_at.desc(), Booking.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_for_mechanic(self, mechanic_id: uuid.UUID, limit: int = 50, offset: int = 0) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.mechanic_id == mechanic_id)
            .order_by(Booking.created_at.desc(), Booking.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_for(self, actor: Actor, limit: int = 50, offset: int = 0) -> list[Booking]:
        if actor.is_mechanic and actor.mechanic_id is not None:
            return await self.list_for_mechanic(actor.mechanic_id, limit, offset)
        return await self.list_for_customer(actor.user_id, limit, offset)

    async def create(self, actor: Actor, details: BookingCreateRequest) -> Booking:
        """Store a PENDING booking from ``actor`` to ``details.mechanic_id``.

        The price is resolved once here and never recomputed. Mechanic
        availability is not checked: a busy mechanic can still be booked.
        """
        actor.require_role(UserRole.CUSTOMER, "create")

        customer = await self.db.get(User, actor.user_id)
        if customer is None or customer.role != UserRole.CUSTOMER:
            raise ValidationError("Customer not found")

        mechanic = await self.db.get(MechanicProfile, details.mechanic_id)
        if mechanic is None:
            raise ValidationError("Mechanic not found")

        price = resolve_price(mechanic, details.subscription_type, details.service_type)

        latitude, longitude = details.latitude, details.longitude
        if latitude is None or longitude is None:
            latitude, longitude = customer.latitude, customer.longitude

        booking = Booking(
            customer_id=customer.id,
            mechanic_id=mechanic.id,
            status=BookingStatus.PENDING.value,
            vehicle_type=details.vehicle_type,
            vehicle_model=details.vehicle_model,
            problem_description=details.problem_description,
            service_type=details.service_type,
            location=details.location or customer.address,
            latitude=latitude,
            longitude=longitude,
            subscription_type=details.subscription_type.value,
            price=price,
            scheduled_at=details.scheduled_time or _now(),
        )
        self.db.add(booking)
        await self.db.flush()

        await self._notify(mechanic.user_id, NotificationType.BOOKING_CREATED, booking.id, BookingStatus.PENDING)

        BOOKINGS_CREATED.labels(subscription_type=details.subscription_type.value).inc()
        logger.info(
            "booking_created",
            booking_id=str(booking.id),
            customer_id=str(customer.id),
            mechanic_id=str(mechanic.id),
            subscription_type=details.subscription_type.value,
            price=str(price),
        )
        return await self.get(booking.id)

    async def accept(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        actor.require_role(UserRole.MECHANIC, "accept")
        booking = await self._transition(
            booking_id, actor, BookingStatus.ACCEPTED, "accept", accepted_at=_now()
        )
        await self._notify(booking.customer_id, NotificationType.BOOKING_ACCEPTED, booking.id, booking.status)
        return booking

    async def reject(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        actor.require_role(UserRole.MECHANIC, "reject")
        booking = await self._transition(
            booking_id, actor, BookingStatus.REJECTED, "reject", rejected_at=_now()
        )
        await self._notify(booking.customer_id, NotificationType.BOOKING_REJECTED, booking.id, booking.status)
        return booking

    async def start(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        actor.require_role(UserRole.MECHANIC, "start")
        booking = await self._transition(
            booking_id, actor, BookingStatus.IN_PROGRESS, "start", started_at=_now()
        )
        await self.db.execute(
            update(MechanicProfile)
            .where(MechanicProfile.id == booking.mechanic_id)
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        await self._notify(booking.customer_id, NotificationType.BOOKING_STARTED, booking.id, booking.status)
        return booking

    async def complete(
        self, booking_id: uuid.UUID, actor: Actor, actual_duration_minutes: int | None = None
    ) -> Booking:
        actor.require_role(UserRole.MECHANIC, "complete")
        if actual_duration_minutes is not None and actual_duration_minutes < 0:
            raise ValidationError("Actual duration cannot be negative")
        booking = await self._transition(
            booking_id,
            actor,
            BookingStatus.COMPLETED,
            "complete",
            completed_at=_now(),
            actual_duration_minutes=actual_duration_minutes,
        )
        # Counter is incremented in SQL so concurrent completions cannot lose a job.
        await self.db.execute(
            update(MechanicProfile)
            .where(MechanicProfile.id == booking.mechanic_id)
            .values(total_jobs=MechanicProfile.total_jobs + 1, is_available=True)
            .execution_options(synchronize_session=False)
        )
        await self._notify(booking.customer_id, NotificationType.BOOKING_COMPLETED, booking.id, booking.status)
        return booking

    async def cancel(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        actor.require_role(UserRole.CUSTOMER, "cancel")
        booking = await self._transition(
            booking_id, actor, BookingStatus.CANCELLED, "cancel", cancelled_at=_now()
        )
        await self._notify(
            booking.mechanic.user_id, NotificationType.BOOKING_CANCELLED, booking.id, booking.status
        )
        return booking

    async def rate(self, booking_id: uuid.UUID, actor: Actor, rating: int, feedback: str | None = None) -> Booking:
        """Record the customer's rating and fold it into the mechanic's running average.

        A booking is rated at most once. The guard (COMPLETED, unrated, owned
        by the caller) and the write are one statement, so a second concurrent
        rating finds ``rating`` already set and fails.
        """
        actor.require_role(UserRole.CUSTOMER, "rate")
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.customer_id == actor.user_id,
                Booking.status == BookingStatus.COMPLETED.value,
                Booking.rating.is_(None),
            )
            .values(rating=rating, feedback=feedback, rated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            booking = await self.get(booking_id)
            BOOKING_TRANSITION_CONFLICTS.labels(action="rate").inc()
            logger.warning("booking_rate_refused", booking_id=str(booking_id), status=booking.status)
            if booking.customer_id != actor.user_id:
                raise Unauthorized("Not your booking")
            if booking.status != BookingStatus.COMPLETED:
                raise InvalidState("Only completed bookings can be rated")
            raise InvalidState("Booking has already been rated")

        booking = await self.get(booking_id)
        await self.db.execute(
            update(MechanicProfile)
            .where(MechanicProfile.id == booking.mechanic_id)
            .values(
                rating_avg=(MechanicProfile.rating_avg * MechanicProfile.total_ratings + rating)
                / (MechanicProfile.total_ratings + 1),
                total_ratings=MechanicProfile.total_ratings + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self._notify(booking.mechanic.user_id, NotificationType.BOOKING_RATED, booking.id, booking.status)

        BOOKINGS_RATED.labels(rating=str(rating)).inc()
        logger.info("booking_rated", booking_id=str(booking.id), mechanic_id=str(booking.mechanic_id), rating=rating)
        return booking

    async def _transition(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        target: BookingStatus,
        action: str,
        **values: Any,
    ) -> Booking:
        sources = [status.value for status in sources_for(target)]
        conditions = [Booking.id == booking_id, Booking.status.in_(sources)]
        if actor.is_mechanic:
            conditions.append(Booking.mechanic_id == actor.mechanic_id)
        else:
            conditions.append(Booking.customer_id == actor.user_id)

        result = await self.db.execute(
            update(Booking)
            .where(*conditions)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._refuse(booking_id, actor, target, action)

        booking = await self.get(booking_id)
        BOOKING_TRANSITIONS.labels(action=action).inc()
        logger.info(
            f"booking_{target.value.lower()}",
            booking_id=str(booking.id),
            mechanic_id=str(booking.mechanic_id),
            customer_id=str(booking.customer_id),
        )
        return booking

    async def _refuse(self, booking_id: uuid.UUID, actor: Actor, target: BookingStatus, action: str) -> None:
        """Explain a transition whose UPDATE matched no row. Always raises."""
        booking = await self.get(booking_id)
        BOOKING_TRANSITION_CONFLICTS.labels(action=action).inc()
        logger.warning(
            "booking_transition_conflict",
            booking_id=str(booking_id),
            action=action,
            status=booking.status,
            actor_id=str(actor.user_id),
        )
        if actor.is_mechanic and booking.mechanic_id != actor.mechanic_id:
            raise InvalidTransition("Booking is not assigned to this mechanic")
        if actor.is_customer and booking.customer_id != actor.user_id:
            raise Unauthorized("Not your booking")
        validate_transition(booking.status, target, action=action)
        # Unreachable with a forward-only graph
        raise InvalidTransition(f"Cannot {action} this booking")

    async def _notify(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType,
        booking_id: uuid.UUID,
        status: BookingStatus | str,
    ) -> None:
        title, body = _NOTICES[notification_type]
        await create_notification(
            db=self.db,
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            body=body,
            data={"booking_id": str(booking_id), "status": BookingStatus(status).value},
        )
