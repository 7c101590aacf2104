from mechdispatch.errors import InvalidTransition
from mechdispatch.models.enums import BookingStatus

# Every legal status edge. Anything not listed here is rejected.
ALLOWED_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED,
    },
    BookingStatus.COMPLETED: set(),  # Terminal state
    BookingStatus.CANCELLED: set(),  # Terminal state
    BookingStatus.REJECTED: set(),  # Terminal state
}

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def sources_for(target: BookingStatus) -> set[BookingStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    return {source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets}


def is_terminal(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def validate_transition(current: BookingStatus | str, new: BookingStatus, action: str = "") -> None:
    """Validate a booking status transition. Raises InvalidTransition if the edge does not exist."""
    current = BookingStatus(current)
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        verb = f" {action}" if action else ""
        raise InvalidTransition(
            f"Cannot{verb} a booking in '{current.value}' status "
            f"(transition '{current.value}' -> '{new.value}' is not allowed)"
        )
