import uuid
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from mechdispatch.models.mechanic_profile import MechanicProfile


class MechanicResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    phone: str
    specialty: str
    hourly_rate: Decimal | None = None
    monthly_subscription: Decimal | None = None
    yearly_subscription: Decimal | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_available: bool
    rating: float
    total_ratings: int
    total_jobs: int

    @classmethod
    def from_profile(cls, profile: MechanicProfile, **extra) -> "MechanicResponse":
        """Build from a profile whose ``user`` relationship is loaded."""
        return cls(
            id=profile.id,
            user_id=profile.user_id,
            name=profile.user.name,
            phone=profile.user.phone,
            specialty=profile.specialty,
            hourly_rate=profile.hourly_rate,
            monthly_subscription=profile.monthly_subscription,
            yearly_subscription=profile.yearly_subscription,
            latitude=profile.latitude,
            longitude=profile.longitude,
            is_available=profile.is_available,
            rating=round(profile.rating_avg or 0.0, 1),
            total_ratings=profile.total_ratings,
            total_jobs=profile.total_jobs,
            **extra,
        )


class NearbyMechanicResponse(MechanicResponse):
    distance_km: float


class MechanicUpdateRequest(BaseModel):
    specialty: str | None = Field(None, min_length=1, max_length=50)
    hourly_rate: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    monthly_subscription: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    yearly_subscription: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    is_available: bool | None = None

    @field_validator("specialty")
    @classmethod
    def strip_specialty(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("specialty must not be blank")
        return v

    @model_validator(mode="after")
    def coordinates_together(self) -> "MechanicUpdateRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be updated together")
        return self
