from app.core.database import Base
from .user import User, UserRole
from .tutor_profile import TutorProfile
from .availability import Slot
from .booking import Booking, BookingStatus

__all__ = [
    "Base",

    # Users
    "User",
    "UserRole",
    "TutorProfile",

    # Availability and booking
    "Slot",
    "Booking",
    "BookingStatus",
]
