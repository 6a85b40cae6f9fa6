from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import uuid

from app.core.time_intervals import RecurrencePattern
from app.models.availability import Slot


class SlotCreateRequest(BaseModel):
    start_time: datetime = Field(..., description="Slot start time (naive values are read as UTC)")
    end_time: datetime = Field(..., description="Slot end time")
    duration: Optional[int] = Field(None, gt=0, description="Duration in minutes, must match start/end when given")
    recurrence: RecurrencePattern = Field(RecurrencePattern.NONE, description="Recurrence pattern")
    recurrence_end: Optional[datetime] = Field(None, description="Last instant a recurring slot may start (exclusive)")
    recurrence_count: Optional[int] = Field(None, ge=1, le=365, description="Maximum number of occurrences")


class SlotUpdateRequest(BaseModel):
    start_time: Optional[datetime] = Field(None, description="New start time")
    end_time: Optional[datetime] = Field(None, description="New end time")
    duration: Optional[int] = Field(None, gt=0, description="New duration in minutes")


class TutorSummary(BaseModel):
    id: uuid.UUID = Field(..., description="Tutor profile ID")
    name: str = Field(..., description="Tutor name")
    subjects: List[str] = Field(default_factory=list, description="Subjects taught")
    hourly_rate: float = Field(..., description="Hourly rate")
    rating: float = Field(..., description="Average rating")
    total_reviews: int = Field(..., description="Number of ratings")


class SlotResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Slot ID")
    tutor_id: uuid.UUID = Field(..., description="Tutor profile ID")
    start_time: datetime = Field(..., description="Session start time (UTC)")
    end_time: datetime = Field(..., description="Session end time (UTC)")
    duration: int = Field(..., description="Duration in minutes")
    is_booked: bool = Field(..., description="Whether the slot holds a live booking")
    recurrence: RecurrencePattern = Field(..., description="Recurrence pattern")
    recurrence_end: Optional[datetime] = Field(None, description="Recurrence horizon")
    tutor: Optional[TutorSummary] = Field(None, description="Tutor details when loaded")

    @classmethod
    def from_slot(cls, slot: Slot, tutor: Optional[TutorSummary] = None) -> "SlotResponse":
        return cls(
            id=slot.id,
            tutor_id=slot.tutor_id,
            start_time=slot.start_at,
            end_time=slot.end_at,
            duration=slot.duration_minutes,
            is_booked=slot.is_booked,
            recurrence=slot.recurrence,
            recurrence_end=slot.recurrence_end,
            tutor=tutor,
        )


class RecurringSlotResponse(BaseModel):
    created_count: int = Field(..., description="Number of slots created")
    skipped_count: int = Field(..., description="Occurrences skipped because they overlapped")
    slots: List[SlotResponse] = Field(default_factory=list, description="Created slots")


class SlotBookingSummary(BaseModel):
    id: uuid.UUID = Field(..., description="Booking ID")
    status: str = Field(..., description="Booking status")
    subject: str = Field(..., description="Subject")
    student_name: str = Field(..., description="Student name")
    student_email: str = Field(..., description="Student email")


class TutorSlotResponse(SlotResponse):
    bookings: List[SlotBookingSummary] = Field(default_factory=list, description="Booking history of the slot")
