class TutorBookException(Exception):
    """Base exception for TutorBook application"""
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class SchedulingError(TutorBookException):
    """Exception raised for slot scheduling errors"""
    pass


class BookingError(TutorBookException):
    """Exception raised for booking-related errors"""
    pass


class InvalidRangeError(SchedulingError):
    """End time must be after start time"""
    pass


class PastSlotError(SchedulingError):
    """Cannot use a slot that starts in the past"""
    pass


class OverlapConflictError(SchedulingError):
    """Slot overlaps with existing slot"""
    status_code = 409


class SlotLockedError(SchedulingError):
    """Cannot modify a booked slot"""
    pass


class NotFoundError(TutorBookException):
    """Resource not found"""
    status_code = 404


class SlotNotFoundError(NotFoundError):
    """Slot not found"""
    pass


class BookingNotFoundError(NotFoundError):
    """Booking not found"""
    pass


class ForbiddenError(TutorBookException):
    """Forbidden"""
    status_code = 403


class SlotAlreadyBookedError(BookingError):
    """Slot is already booked"""
    status_code = 409


class AlreadyCancelledError(BookingError):
    """Booking is already cancelled"""
    pass


class AlreadyRatedError(BookingError):
    """This booking has already been rated"""
    pass


class NotCompletedError(BookingError):
    """Only completed bookings can be rated"""
    pass


class InvalidRatingError(BookingError):
    """Rating must be between 1 and 5"""
    pass


class InvalidStatusTransitionError(BookingError):
    """Booking status change is not allowed"""
    pass


class AuthenticationError(TutorBookException):
    """Could not validate credentials"""
    status_code = 401


class TransientStoreError(TutorBookException):
    """The data store is temporarily unavailable, please retry"""
    status_code = 503


class NotificationError(TutorBookException):
    """Exception raised for notification errors"""
    status_code = 502
