from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import uuid

from app.core.time_intervals import to_local
from app.models.booking import Booking, BookingStatus


class BookingCreateRequest(BaseModel):
    slot_id: uuid.UUID = Field(..., description="Slot to book")
    subject: str = Field(..., min_length=1, max_length=200, description="Subject for the session")
    notes: Optional[str] = Field(None, max_length=2000, description="Additional notes")


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000, description="Cancellation reason")


class BookingRateRequest(BaseModel):
    # Range checks live in the booking service so every caller gets the same error
    rating: int = Field(..., description="Rating from 1 to 5")
    review: Optional[str] = Field(None, max_length=2000, description="Written review")


class BookingStatusUpdateRequest(BaseModel):
    status: BookingStatus = Field(..., description="New booking status")
    reason: Optional[str] = Field(None, max_length=1000, description="Reason, used when cancelling")


class BookingParticipant(BaseModel):
    id: uuid.UUID = Field(..., description="User ID")
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address")


class BookingResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Booking ID")
    slot_id: uuid.UUID = Field(..., description="Slot ID")
    student_id: uuid.UUID = Field(..., description="Student ID")
    tutor_id: uuid.UUID = Field(..., description="Tutor profile ID")
    start_time: datetime = Field(..., description="Session start time (UTC)")
    end_time: datetime = Field(..., description="Session end time (UTC)")
    local_start_time: Optional[datetime] = Field(None, description="Session start in the viewer's timezone")
    subject: str = Field(..., description="Subject")
    notes: Optional[str] = Field(None, description="Additional notes")
    status: BookingStatus = Field(..., description="Booking status")
    cancellation_reason: Optional[str] = Field(None, description="Cancellation reason")
    rating: Optional[int] = Field(None, description="Student rating")
    review: Optional[str] = Field(None, description="Student review")
    student: Optional[BookingParticipant] = Field(None, description="Student details")
    tutor: Optional[BookingParticipant] = Field(None, description="Tutor user details")
    created_at: datetime = Field(..., description="Creation time")

    @classmethod
    def from_booking(cls, booking: Booking, timezone_name: Optional[str] = None) -> "BookingResponse":
        slot = booking.slot
        student = booking.student
        tutor_user = booking.tutor.user
        return cls(
            id=booking.id,
            slot_id=booking.slot_id,
            student_id=booking.student_id,
            tutor_id=booking.tutor_id,
            start_time=slot.start_at,
            end_time=slot.end_at,
            local_start_time=to_local(slot.start_at, timezone_name) if timezone_name else None,
            subject=booking.subject,
            notes=booking.notes,
            status=booking.status,
            cancellation_reason=booking.cancellation_reason,
            rating=booking.rating,
            review=booking.review,
            student=BookingParticipant(id=student.id, name=student.full_name, email=student.email),
            tutor=BookingParticipant(id=tutor_user.id, name=tutor_user.full_name, email=tutor_user.email),
            created_at=booking.created_at,
        )


class PaginationInfo(BaseModel):
    page: int = Field(..., description="Current page")
    limit: int = Field(..., description="Page size")
    total: int = Field(..., description="Total matching items")
    pages: int = Field(..., description="Total pages")


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse] = Field(default_factory=list, description="Bookings on this page")
    pagination: PaginationInfo = Field(..., description="Pagination details")


class PlatformStatsResponse(BaseModel):
    total_users: int
    total_students: int
    total_tutors: int
    total_bookings: int
    pending_bookings: int
    confirmed_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    total_revenue: float
