import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.util import await_only

from mechdispatch.database import Base
from mechdispatch.errors import InvalidState, InvalidTransition, NotFound, PricingUnavailable, Unauthorized, ValidationError
from mechdispatch.models.booking import Booking
from mechdispatch.models.enums import BookingStatus, SubscriptionType, UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.notification import Notification
from mechdispatch.models.user import User
from mechdispatch.schemas.booking import BookingCreateRequest
from mechdispatch.services.actor import Actor
from mechdispatch.services.ledger import BookingLedger
from tests.conftest import create_customer, create_mechanic, customer_actor, mechanic_actor


def _details(mechanic: MechanicProfile, subscription_type: SubscriptionType = SubscriptionType.HOURLY, **extra):
    return BookingCreateRequest(
        mechanic_id=mechanic.id,
        vehicle_type="Car",
        vehicle_model="Swift",
        problem_description="Engine makes a knocking noise",
        subscription_type=subscription_type,
        **extra,
    )


async def _pending(db: AsyncSession, customer: User, mechanic: MechanicProfile) -> Booking:
    return await BookingLedger(db).create(customer_actor(customer), _details(mechanic))


async def _completed(db: AsyncSession, customer: User, mechanic: MechanicProfile) -> Booking:
    ledger = BookingLedger(db)
    actor = mechanic_actor(mechanic)
    booking = await _pending(db, customer, mechanic)
    await ledger.accept(booking.id, actor)
    await ledger.start(booking.id, actor)
    return await ledger.complete(booking.id, actor, 45)


# ============ create ============


@pytest.mark.asyncio
async def test_create_booking_is_pending_with_hourly_price(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    assert booking.status == BookingStatus.PENDING
    assert booking.price == Decimal("50.00")
    assert booking.customer_id == customer_user.id
    assert booking.mechanic_id == mechanic_profile.id
    assert booking.scheduled_at is not None
    assert booking.subscription_type == SubscriptionType.HOURLY


@pytest.mark.asyncio
async def test_create_booking_defaults_location_to_customer(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    assert (booking.latitude, booking.longitude) == (customer_user.latitude, customer_user.longitude)
    assert booking.location == customer_user.address


@pytest.mark.asyncio
async def test_create_booking_notifies_mechanic(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    result = await db.execute(select(Notification).where(Notification.user_id == mechanic_profile.user_id))
    notifications = result.scalars().all()
    assert len(notifications) == 1
    assert notifications[0].type == "booking_created"
    assert notifications[0].data["booking_id"] == str(booking.id)


@pytest.mark.asyncio
async def test_create_booking_unknown_mechanic(db: AsyncSession, customer_user: User):
    details = BookingCreateRequest(
        mechanic_id=uuid.uuid4(),
        vehicle_type="Car",
        vehicle_model="Swift",
        problem_description="Flat tyre",
        subscription_type=SubscriptionType.HOURLY,
    )
    with pytest.raises(ValidationError):
        await BookingLedger(db).create(customer_actor(customer_user), details)


@pytest.mark.asyncio
async def test_create_booking_unknown_customer(db: AsyncSession, mechanic_profile: MechanicProfile):
    ghost = Actor(user_id=uuid.uuid4(), role=UserRole.CUSTOMER)
    with pytest.raises(ValidationError):
        await BookingLedger(db).create(ghost, _details(mechanic_profile))


@pytest.mark.asyncio
async def test_create_booking_by_mechanic_is_unauthorized(db: AsyncSession, mechanic_profile: MechanicProfile):
    with pytest.raises(Unauthorized):
        await BookingLedger(db).create(mechanic_actor(mechanic_profile), _details(mechanic_profile))


@pytest.mark.asyncio
async def test_create_booking_tier_not_offered(db: AsyncSession, customer_user: User):
    mechanic = await create_mechanic(db, yearly_subscription=None)

    with pytest.raises(PricingUnavailable):
        await BookingLedger(db).create(
            customer_actor(customer_user), _details(mechanic, SubscriptionType.YEARLY)
        )

    result = await db.execute(select(Booking))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_create_booking_with_unavailable_mechanic(db: AsyncSession, customer_user: User):
    mechanic = await create_mechanic(db, is_available=False)

    booking = await _pending(db, customer_user, mechanic)
    accepted = await BookingLedger(db).accept(booking.id, mechanic_actor(mechanic))

    assert accepted.status == BookingStatus.ACCEPTED


@pytest.mark.asyncio
async def test_price_is_fixed_at_creation(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    booking = await _pending(db, customer_user, mechanic_profile)

    mechanic_profile.hourly_rate = Decimal("80.00")
    await db.flush()

    reloaded = await BookingLedger(db).get(booking.id)
    assert reloaded.price == Decimal("50.00")


# ============ transitions ============


@pytest.mark.asyncio
async def test_full_lifecycle(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ledger = BookingLedger(db)
    actor = mechanic_actor(mechanic_profile)
    booking = await _pending(db, customer_user, mechanic_profile)

    accepted = await ledger.accept(booking.id, actor)
    assert accepted.status == BookingStatus.ACCEPTED
    assert accepted.accepted_at is not None

    started = await ledger.start(booking.id, actor)
    assert started.status == BookingStatus.IN_PROGRESS
    assert started.started_at is not None
    await db.refresh(mechanic_profile)
    assert mechanic_profile.is_available is False

    completed = await ledger.complete(booking.id, actor, 90)
    assert completed.status == BookingStatus.COMPLETED
    assert completed.actual_duration_minutes == 90
    assert completed.completed_at is not None
    await db.refresh(mechanic_profile)
    assert mechanic_profile.is_available is True
    assert mechanic_profile.total_jobs == 1


@pytest.mark.asyncio
async def test_double_accept_is_invalid_transition(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    ledger = BookingLedger(db)
    booking = await _pending(db, customer_user, mechanic_profile)
    await ledger.accept(booking.id, mechanic_actor(mechanic_profile))

    with pytest.raises(InvalidTransition):
        await ledger.accept(booking.id, mechanic_actor(mechanic_profile))


@pytest.mark.asyncio
async def test_accept_by_other_mechanic(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    other = await create_mechanic(db, email="other@test.com")
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(InvalidTransition, match="not assigned"):
        await BookingLedger(db).accept(booking.id, mechanic_actor(other))

    reloaded = await BookingLedger(db).get(booking.id)
    assert reloaded.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_accept_by_customer_is_unauthorized(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(Unauthorized):
        await BookingLedger(db).accept(booking.id, customer_actor(customer_user))


@pytest.mark.asyncio
async def test_unknown_booking_is_not_found(db: AsyncSession, mechanic_profile: MechanicProfile):
    with pytest.raises(NotFound):
        await BookingLedger(db).accept(uuid.uuid4(), mechanic_actor(mechanic_profile))


@pytest.mark.asyncio
async def test_start_requires_accepted(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(InvalidTransition):
        await BookingLedger(db).start(booking.id, mechanic_actor(mechanic_profile))


@pytest.mark.asyncio
async def test_rejected_booking_is_terminal(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ledger = BookingLedger(db)
    actor = mechanic_actor(mechanic_profile)
    booking = await _pending(db, customer_user, mechanic_profile)

    rejected = await ledger.reject(booking.id, actor)
    assert rejected.status == BookingStatus.REJECTED
    assert rejected.rejected_at is not None

    with pytest.raises(InvalidTransition):
        await ledger.accept(booking.id, actor)
    with pytest.raises(InvalidTransition):
        await ledger.cancel(booking.id, customer_actor(customer_user))


@pytest.mark.asyncio
async def test_cancel_pending_and_accepted(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ledger = BookingLedger(db)
    pending = await _pending(db, customer_user, mechanic_profile)
    accepted = await _pending(db, customer_user, mechanic_profile)
    await ledger.accept(accepted.id, mechanic_actor(mechanic_profile))

    for booking in (pending, accepted):
        cancelled = await ledger.cancel(booking.id, customer_actor(customer_user))
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
async def test_cancel_in_progress_is_refused(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ledger = BookingLedger(db)
    actor = mechanic_actor(mechanic_profile)
    booking = await _pending(db, customer_user, mechanic_profile)
    await ledger.accept(booking.id, actor)
    await ledger.start(booking.id, actor)

    with pytest.raises(InvalidTransition):
        await ledger.cancel(booking.id, customer_actor(customer_user))


@pytest.mark.asyncio
async def test_cancel_by_other_customer_is_unauthorized(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    stranger = await create_customer(db, email="stranger@test.com")
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(Unauthorized):
        await BookingLedger(db).cancel(booking.id, customer_actor(stranger))


@pytest.mark.asyncio
async def test_cancel_by_mechanic_is_unauthorized(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(Unauthorized):
        await BookingLedger(db).cancel(booking.id, mechanic_actor(mechanic_profile))


@pytest.mark.asyncio
async def test_transitions_notify_customer(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    await _completed(db, customer_user, mechanic_profile)

    result = await db.execute(
        select(Notification.type).where(Notification.user_id == customer_user.id)
    )
    assert sorted(result.scalars().all()) == ["booking_accepted", "booking_completed", "booking_started"]


# ============ rate ============


@pytest.mark.asyncio
async def test_rate_completed_booking(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    booking = await _completed(db, customer_user, mechanic_profile)

    rated = await BookingLedger(db).rate(booking.id, customer_actor(customer_user), 4, "Quick and tidy")

    assert rated.rating == 4
    assert rated.feedback == "Quick and tidy"
    assert rated.rated_at is not None
    await db.refresh(mechanic_profile)
    assert mechanic_profile.rating_avg == pytest.approx(4.0)
    assert mechanic_profile.total_ratings == 1


@pytest.mark.asyncio
async def test_rate_twice_is_invalid_state(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ledger = BookingLedger(db)
    booking = await _completed(db, customer_user, mechanic_profile)
    await ledger.rate(booking.id, customer_actor(customer_user), 5)

    with pytest.raises(InvalidState):
        await ledger.rate(booking.id, customer_actor(customer_user), 1)

    await db.refresh(mechanic_profile)
    assert mechanic_profile.total_ratings == 1
    assert mechanic_profile.rating_avg == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_rate_before_completion_is_invalid_state(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(InvalidState):
        await BookingLedger(db).rate(booking.id, customer_actor(customer_user), 5)


@pytest.mark.asyncio
async def test_rate_by_other_customer_is_unauthorized(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    stranger = await create_customer(db, email="stranger@test.com")
    booking = await _completed(db, customer_user, mechanic_profile)

    with pytest.raises(Unauthorized):
        await BookingLedger(db).rate(booking.id, customer_actor(stranger), 5)


@pytest.mark.asyncio
async def test_rate_out_of_range(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    booking = await _completed(db, customer_user, mechanic_profile)

    with pytest.raises(ValidationError):
        await BookingLedger(db).rate(booking.id, customer_actor(customer_user), 6)


@pytest.mark.asyncio
async def test_running_average_equals_mean(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    ratings = [5, 4, 3, 5]
    for rating in ratings:
        booking = await _completed(db, customer_user, mechanic_profile)
        await BookingLedger(db).rate(booking.id, customer_actor(customer_user), rating)

    await db.refresh(mechanic_profile)
    assert mechanic_profile.total_ratings == len(ratings)
    assert mechanic_profile.total_jobs == len(ratings)
    assert mechanic_profile.rating_avg == pytest.approx(sum(ratings) / len(ratings))


# ============ listing ============


@pytest.mark.asyncio
async def test_list_for_each_party(db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile):
    other_customer = await create_customer(db, email="other@test.com")
    mine = await _pending(db, customer_user, mechanic_profile)
    theirs = await _pending(db, other_customer, mechanic_profile)
    ledger = BookingLedger(db)

    assert [b.id for b in await ledger.list_for(customer_actor(customer_user))] == [mine.id]
    assert {b.id for b in await ledger.list_for(mechanic_actor(mechanic_profile))} == {mine.id, theirs.id}


@pytest.mark.asyncio
async def test_get_for_stranger_is_unauthorized(
    db: AsyncSession, customer_user: User, mechanic_profile: MechanicProfile
):
    stranger = await create_customer(db, email="stranger@test.com")
    booking = await _pending(db, customer_user, mechanic_profile)

    with pytest.raises(Unauthorized):
        await BookingLedger(db).get_for(booking.id, customer_actor(stranger))


# ============ concurrency ============


def _file_engine(path):
    """File-backed SQLite in WAL mode, keeping the driver's deferred transactions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def _wal_mode(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def _hold_statement(engine, prefix: str, held: asyncio.Event, release: asyncio.Event) -> None:
    """Stop the first statement on ``engine`` starting with ``prefix`` until ``release`` is set."""
    state = {"done": False}

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _hold(conn, cursor, statement, parameters, context, executemany):
        if state["done"] or not statement.lstrip().startswith(prefix):
            return
        state["done"] = True
        held.set()
        await_only(asyncio.wait_for(release.wait(), timeout=10))


async def _race_setup(path):
    """Two engines on one database file: the first one is held mid-operation, the second races it."""
    held_engine, racing_engine = _file_engine(path), _file_engine(path)
    async with racing_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return (
        held_engine,
        racing_engine,
        async_sessionmaker(held_engine, class_=AsyncSession, expire_on_commit=False),
        async_sessionmaker(racing_engine, class_=AsyncSession, expire_on_commit=False),
    )


@pytest.mark.asyncio
async def test_concurrent_accepts_have_exactly_one_winner(tmp_path):
    held_engine, racing_engine, held_sessions, racing_sessions = await _race_setup(tmp_path / "race.db")

    async with racing_sessions() as setup:
        customer = await create_customer(setup)
        mechanic = await create_mechanic(setup)
        booking = await BookingLedger(setup).create(customer_actor(customer), _details(mechanic))
        await setup.commit()
    actor = mechanic_actor(mechanic)

    held, release = asyncio.Event(), asyncio.Event()
    _hold_statement(held_engine, "UPDATE bookings", held, release)

    async def held_accept() -> str:
        async with held_sessions() as session:
            try:
                await BookingLedger(session).accept(booking.id, actor)
            except InvalidTransition:
                await session.rollback()
                return "conflict"
            await session.commit()
            return "ok"

    async def racing_accept() -> str:
        # Runs start to finish while the other accept sits just before its UPDATE
        await asyncio.wait_for(held.wait(), timeout=10)
        try:
            async with racing_sessions() as session:
                await BookingLedger(session).accept(booking.id, actor)
                await session.commit()
            return "ok"
        finally:
            release.set()

    try:
        held_result, racing_result = await asyncio.gather(held_accept(), racing_accept())
        assert (held_result, racing_result) == ("conflict", "ok")

        async with racing_sessions() as check:
            final = await BookingLedger(check).get(booking.id)
            assert final.status == BookingStatus.ACCEPTED
            accepted = await check.execute(
                select(Notification).where(Notification.type == "booking_accepted")
            )
            assert len(accepted.scalars().all()) == 1
    finally:
        await held_engine.dispose()
        await racing_engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_ratings_for_one_mechanic_are_both_counted(tmp_path):
    held_engine, racing_engine, held_sessions, racing_sessions = await _race_setup(tmp_path / "ratings.db")

    async with racing_sessions() as setup:
        customer = await create_customer(setup)
        mechanic = await create_mechanic(setup)
        first = await _completed(setup, customer, mechanic)
        second = await _completed(setup, customer, mechanic)
        await setup.commit()

    held, release = asyncio.Event(), asyncio.Event()
    _hold_statement(held_engine, "UPDATE bookings", held, release)

    async def held_rate() -> None:
        async with held_sessions() as session:
            # The session already holds the mechanic as it was before the other rating
            stale = await session.get(MechanicProfile, mechanic.id)
            assert stale.total_ratings == 0
            await BookingLedger(session).rate(first.id, customer_actor(customer), 5)
            await session.commit()

    async def racing_rate() -> None:
        await asyncio.wait_for(held.wait(), timeout=10)
        try:
            async with racing_sessions() as session:
                await BookingLedger(session).rate(second.id, customer_actor(customer), 2)
                await session.commit()
        finally:
            release.set()

    try:
        await asyncio.gather(held_rate(), racing_rate())

        async with racing_sessions() as check:
            profile = await check.get(MechanicProfile, mechanic.id)
            assert profile.total_ratings == 2
            assert profile.rating_avg == pytest.approx(3.5)
    finally:
        await held_engine.dispose()
        await racing_engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_completions_count_every_job(tmp_path):
    held_engine, racing_engine, _, sessions = await _race_setup(tmp_path / "jobs.db")
    await held_engine.dispose()

    async with sessions() as setup:
        customer = await create_customer(setup)
        mechanic = await create_mechanic(setup)
        actor = mechanic_actor(mechanic)
        ledger = BookingLedger(setup)
        booking_ids = []
        for _ in range(3):
            booking = await ledger.create(customer_actor(customer), _details(mechanic))
            await ledger.accept(booking.id, actor)
            await ledger.start(booking.id, actor)
            booking_ids.append(booking.id)
        await setup.commit()

    async def complete(booking_id: uuid.UUID) -> None:
        async with sessions() as session:
            await BookingLedger(session).complete(booking_id, actor, 30)
            await session.commit()

    try:
        await asyncio.gather(*(complete(booking_id) for booking_id in booking_ids))

        async with sessions() as check:
            profile = await check.get(MechanicProfile, mechanic.id)
            assert profile.total_jobs == 3
            assert profile.is_available is True
    finally:
        await racing_engine.dispose()
