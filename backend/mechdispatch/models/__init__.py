from mechdispatch.models.blacklisted_token import BlacklistedToken
from mechdispatch.models.booking import Booking
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.models.notification import Notification
from mechdispatch.models.user import User

__all__ = [
    "User",
    "MechanicProfile",
    "Booking",
    "Notification",
    "BlacklistedToken",
]
