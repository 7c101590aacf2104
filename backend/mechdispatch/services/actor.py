import uuid
from dataclasses import dataclass

from mechdispatch.errors import Unauthorized
from mechdispatch.models.enums import UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a ledger operation.

    Built once per request from the bearer token and passed explicitly into
    every guarded operation. ``mechanic_id`` is the caller's MechanicProfile id
    and is only set for mechanics.
    """

    user_id: uuid.UUID
    role: UserRole
    mechanic_id: uuid.UUID | None = None
    token_jti: str | None = None

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_mechanic(self) -> bool:
        return self.role == UserRole.MECHANIC

    def require_role(self, role: UserRole, action: str) -> None:
        if self.role != role:
            raise Unauthorized(f"Only {role.value.lower()}s can {action} a booking")
        if role == UserRole.MECHANIC and self.mechanic_id is None:
            raise Unauthorized("Mechanic profile not found")
