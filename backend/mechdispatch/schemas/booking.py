import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from mechdispatch.models.enums import BookingStatus, SubscriptionType


class BookingCreateRequest(BaseModel):
    mechanic_id: uuid.UUID
    vehicle_type: str = Field(min_length=1, max_length=50)
    vehicle_model: str = Field(min_length=1, max_length=100)
    problem_description: str = Field(min_length=1, max_length=2000)
    service_type: str | None = Field(None, max_length=50)
    location: str | None = Field(None, max_length=255)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    subscription_type: SubscriptionType
    # Defaults to the creation time
    scheduled_time: datetime | None = None

    @model_validator(mode="after")
    def coordinates_together(self) -> "BookingCreateRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class CompleteRequest(BaseModel):
    actual_duration_minutes: int | None = Field(None, ge=0, le=60 * 24 * 30)


class RateRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: str | None = Field(None, max_length=2000)


class BookingResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    mechanic_id: uuid.UUID
    status: BookingStatus
    vehicle_type: str
    vehicle_model: str
    problem_description: str
    service_type: str | None = None
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    subscription_type: SubscriptionType
    price: Decimal
    scheduled_at: datetime
    created_at: datetime
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    rejected_at: datetime | None = None
    actual_duration_minutes: int | None = None
    rating: int | None = None
    feedback: str | None = None
    rated_at: datetime | None = None

    model_config = {"from_attributes": True}
