"""Prometheus counters for booking and matching activity."""

from prometheus_client import Counter

BOOKINGS_CREATED = Counter(
    "mechdispatch_bookings_created_total",
    "Total bookings created",
    ["subscription_type"],
)
BOOKING_TRANSITIONS = Counter(
    "mechdispatch_booking_transitions_total",
    "Booking status transitions applied",
    ["action"],
)
BOOKING_TRANSITION_CONFLICTS = Counter(
    "mechdispatch_booking_transition_conflicts_total",
    "Booking transitions refused by the status guard",
    ["action"],
)
BOOKINGS_RATED = Counter(
    "mechdispatch_bookings_rated_total",
    "Total bookings rated by customers",
    ["rating"],
)
MECHANIC_SEARCHES = Counter(
    "mechdispatch_mechanic_searches_total",
    "Nearby mechanic searches",
    ["result"],
)
USERS_REGISTERED = Counter(
    "mechdispatch_users_registered_total",
    "Total users registered",
    ["role"],
)
