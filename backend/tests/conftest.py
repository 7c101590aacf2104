import os
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "development"

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mechdispatch.auth.service import create_access_token, hash_password
from mechdispatch.database import Base, get_db
from mechdispatch.main import app
from mechdispatch.models.enums import UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User
from mechdispatch.services.actor import Actor

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Hashed once; bcrypt at cost 12 is slow enough to dominate the suite otherwise
PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from mechdispatch.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_customer(
    db: AsyncSession,
    email: str = "customer@test.com",
    latitude: float | None = 0.0,
    longitude: float | None = 0.0,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=PASSWORD_HASH,
        role=UserRole.CUSTOMER.value,
        name="Test Customer",
        phone="+919800000001",
        address="1 Test Street",
        latitude=latitude,
        longitude=longitude,
    )
    db.add(user)
    await db.flush()
    # Loads server defaults (created_at) so responses never lazy-load them
    await db.refresh(user)
    return user


async def create_mechanic(
    db: AsyncSession,
    email: str = "mechanic@test.com",
    latitude: float | None = 0.0,
    longitude: float | None = 0.09,
    specialty: str = "All",
    rating_avg: float = 0.0,
    is_available: bool = True,
    hourly_rate: Decimal | None = Decimal("50.00"),
    monthly_subscription: Decimal | None = Decimal("999.00"),
    yearly_subscription: Decimal | None = Decimal("9999.00"),
) -> MechanicProfile:
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=PASSWORD_HASH,
        role=UserRole.MECHANIC.value,
        name="Test Mechanic",
        phone="+919800000002",
        latitude=latitude,
        longitude=longitude,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    profile = MechanicProfile(
        id=uuid.uuid4(),
        user_id=user.id,
        specialty=specialty,
        hourly_rate=hourly_rate,
        monthly_subscription=monthly_subscription,
        yearly_subscription=yearly_subscription,
        latitude=latitude,
        longitude=longitude,
        is_available=is_available,
        rating_avg=rating_avg,
        total_ratings=0,
        total_jobs=0,
    )
    db.add(profile)
    await db.flush()
    await db.refresh(profile)
    return profile


@pytest_asyncio.fixture
async def customer_user(db: AsyncSession) -> User:
    return await create_customer(db)


@pytest_asyncio.fixture
async def mechanic_profile(db: AsyncSession) -> MechanicProfile:
    return await create_mechanic(db)


def customer_actor(user: User) -> Actor:
    return Actor(user_id=user.id, role=UserRole.CUSTOMER)


def mechanic_actor(profile: MechanicProfile) -> Actor:
    return Actor(user_id=profile.user_id, role=UserRole.MECHANIC, mechanic_id=profile.id)


def customer_token(user: User) -> str:
    return create_access_token(str(user.id), UserRole.CUSTOMER.value)


def mechanic_token(profile: MechanicProfile) -> str:
    return create_access_token(str(profile.user_id), UserRole.MECHANIC.value)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
