import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from mechdispatch.models.enums import UserRole


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: str = Field(min_length=1, max_length=20)
    address: str | None = Field(None, max_length=255)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    role: UserRole

    # Mechanics only; omitted values fall back to the configured defaults
    specialty: str | None = Field(None, max_length=50)
    hourly_rate: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    monthly_subscription: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    yearly_subscription: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)

    @field_validator("name", "phone")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def upper_role(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def coordinates_together(self) -> "RegisterRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class AuthResponse(BaseModel):
    token: str
    type: str = "Bearer"
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    mechanic_id: uuid.UUID | None = None


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    phone: str
    address: str | None = None
    role: UserRole
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime
    mechanic_id: uuid.UUID | None = None

    model_config = {"from_attributes": True}
