"""Typed failures raised by the booking core.

Each error carries the HTTP status the REST boundary answers with; the
exception handler in ``mechdispatch.main`` renders them into the response
envelope. None of them is fatal to the process.
"""

from fastapi import status


class DispatchError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    kind: str = "dispatch_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    """Malformed input or a reference to a customer/mechanic that does not exist."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_error"


class NotFound(DispatchError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class InvalidTransition(DispatchError):
    """Booking status guard violated (wrong current status or wrong mechanic)."""

    status_code = status.HTTP_409_CONFLICT
    kind = "invalid_transition"


class InvalidState(DispatchError):
    """Operation not allowed in the booking's current state (rating rules)."""

    status_code = status.HTTP_409_CONFLICT
    kind = "invalid_state"


class PricingUnavailable(DispatchError):
    status_code = 422
    kind = "pricing_unavailable"


class Unauthorized(DispatchError):
    """Actor lacks the role or ownership required by a guarded operation."""

    status_code = status.HTTP_403_FORBIDDEN
    kind = "unauthorized"
