from decimal import ROUND_HALF_UP, Decimal

from mechdispatch.config import settings
from mechdispatch.errors import PricingUnavailable
from mechdispatch.models.enums import SubscriptionType
from mechdispatch.models.mechanic_profile import MechanicProfile

_TIER_FIELDS: dict[SubscriptionType, str] = {
    SubscriptionType.HOURLY: "hourly_rate",
    SubscriptionType.MONTHLY: "monthly_subscription",
    SubscriptionType.YEARLY: "yearly_subscription",
}


def _quantize(amount: Decimal) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def offers_service(mechanic: MechanicProfile, service_type: str | None) -> bool:
    """A mechanic covers a service type when it equals their specialty or either side is the wildcard."""
    if not service_type:
        return True
    wildcard = settings.WILDCARD_SPECIALTY
    return mechanic.specialty in (wildcard, service_type) or service_type == wildcard


def resolve_price(
    mechanic: MechanicProfile,
    subscription_type: SubscriptionType,
    service_type: str | None = None,
) -> Decimal:
    """Price of one booking with ``mechanic`` at the given tier.

    Pricing is mechanic-scoped: each tier reads the matching rate column of
    the profile. Raises PricingUnavailable when the tier is not offered or the
    service type falls outside the mechanic's specialty.
    """
    if not offers_service(mechanic, service_type):
        raise PricingUnavailable(
            f"Mechanic has no pricing for service type '{service_type}' (specialty: {mechanic.specialty})"
        )
    amount = getattr(mechanic, _TIER_FIELDS[SubscriptionType(subscription_type)])
    if amount is None:
        raise PricingUnavailable(
            f"Mechanic does not offer {SubscriptionType(subscription_type).value} pricing"
        )
    return _quantize(amount)


def quote_all(mechanic: MechanicProfile) -> dict[SubscriptionType, Decimal]:
    """Every tier the mechanic currently offers, keyed by subscription type."""
    quotes: dict[SubscriptionType, Decimal] = {}
    for tier, field in _TIER_FIELDS.items():
        amount = getattr(mechanic, field)
        if amount is not None:
            quotes[tier] = _quantize(amount)
    return quotes
