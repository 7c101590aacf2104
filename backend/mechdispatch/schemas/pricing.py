import uuid
from decimal import Decimal

from pydantic import BaseModel

from mechdispatch.models.enums import SubscriptionType


class PriceQuote(BaseModel):
    mechanic_id: uuid.UUID
    subscription_type: SubscriptionType
    service_type: str | None = None
    price: Decimal


class PricingPlansResponse(BaseModel):
    """Every tier a mechanic currently offers. Missing tiers are not offered."""

    mechanic_id: uuid.UUID
    specialty: str
    plans: dict[SubscriptionType, Decimal]
