"""Seed script for the mechanic dispatch backend.

Creates demo data:
- 2 customers
- 3 mechanics around Bangalore with different specialties and pricing

Idempotent: users that already exist are skipped.
Run with: python seed.py

Passwords come from SEED_USER_PASSWORD, with a dev-only fallback.
"""

import asyncio
import os
import sys
from decimal import Decimal

from mechdispatch.config import settings

# Guard: never seed a production database
if settings.is_production:
    print("ERROR: Cannot seed a production database.")
    sys.exit(1)

from sqlalchemy import select

from mechdispatch.auth.service import hash_password
from mechdispatch.database import async_session
from mechdispatch.models.enums import UserRole
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.user import User

SEED_USER_PASSWORD = os.environ.get("SEED_USER_PASSWORD", "password123")

CUSTOMERS = [
    {
        "email": "asha@example.com",
        "name": "Asha Rao",
        "phone": "+919800000001",
        "address": "MG Road, Bangalore",
        "latitude": 12.9756,
        "longitude": 77.6050,
    },
    {
        "email": "rahul@example.com",
        "name": "Rahul Mehta",
        "phone": "+919800000002",
        "address": "Indiranagar, Bangalore",
        "latitude": 12.9784,
        "longitude": 77.6408,
    },
]

MECHANICS = [
    {
        "email": "vikram@example.com",
        "name": "Vikram Singh",
        "phone": "+919800000011",
        "address": "Koramangala, Bangalore",
        "latitude": 12.9352,
        "longitude": 77.6245,
        "specialty": "All",
        "hourly_rate": Decimal("50.00"),
        "monthly_subscription": Decimal("999.00"),
        "yearly_subscription": Decimal("9999.00"),
    },
    {
        "email": "meera@example.com",
        "name": "Meera Iyer",
        "phone": "+919800000012",
        "address": "Jayanagar, Bangalore",
        "latitude": 12.9250,
        "longitude": 77.5938,
        "specialty": "Engine",
        "hourly_rate": Decimal("65.00"),
        "monthly_subscription": Decimal("1299.00"),
        "yearly_subscription": None,
    },
    {
        "email": "arjun@example.com",
        "name": "Arjun Das",
        "phone": "+919800000013",
        "address": "Whitefield, Bangalore",
        "latitude": 12.9698,
        "longitude": 77.7500,
        "specialty": "Tyres",
        "hourly_rate": Decimal("40.00"),
        "monthly_subscription": None,
        "yearly_subscription": None,
    },
]


async def _get_or_create_user(db, data: dict, role: UserRole) -> tuple[User, bool]:
    result = await db.execute(select(User).where(User.email == data["email"]))
    existing = result.scalar_one_or_none()
    if existing:
        print(f"  [skip] User {data['email']} already exists")
        return existing, False

    user = User(
        email=data["email"],
        password_hash=hash_password(SEED_USER_PASSWORD),
        role=role.value,
        name=data["name"],
        phone=data["phone"],
        address=data["address"],
        latitude=data["latitude"],
        longitude=data["longitude"],
    )
    db.add(user)
    await db.flush()
    print(f"  [created] User {data['email']} ({role.value})")
    return user, True


async def seed() -> None:
    async with async_session() as db:
        for data in CUSTOMERS:
            await _get_or_create_user(db, data, UserRole.CUSTOMER)

        for data in MECHANICS:
            user, created = await _get_or_create_user(db, data, UserRole.MECHANIC)
            if not created:
                continue
            db.add(
                MechanicProfile(
                    user_id=user.id,
                    specialty=data["specialty"],
                    hourly_rate=data["hourly_rate"],
                    monthly_subscription=data["monthly_subscription"],
                    yearly_subscription=data["yearly_subscription"],
                    latitude=data["latitude"],
                    longitude=data["longitude"],
                    is_available=True,
                )
            )
            await db.flush()
            print(f"  [created] MechanicProfile for {data['email']} ({data['specialty']})")

        await db.commit()
        print("\nSeed completed successfully.")


if __name__ == "__main__":
    print("Seeding mechanic dispatch database...")
    asyncio.run(seed())
