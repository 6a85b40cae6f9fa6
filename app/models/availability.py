from sqlalchemy import Column, Integer, Boolean, ForeignKey, Enum, Index, Uuid, CheckConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.time_intervals import RecurrencePattern
from app.core.types import UTCDateTime


class Slot(Base):
    __tablename__ = "slots"

    # Foreign key to tutor profile
    tutor_id = Column(Uuid(as_uuid=True), ForeignKey("tutor_profiles.id"), nullable=False)

    # Time information
    start_at = Column(UTCDateTime, nullable=False)  # UTC
    end_at = Column(UTCDateTime, nullable=False)  # UTC
    duration_minutes = Column(Integer, nullable=False)

    # Status
    is_booked = Column(Boolean, default=False, nullable=False)

    # Recurring settings
    recurrence = Column(Enum(RecurrencePattern), default=RecurrencePattern.NONE, nullable=False)
    recurrence_end = Column(UTCDateTime, nullable=True)

    # Relationships
    tutor = relationship("TutorProfile", back_populates="slots")
    bookings = relationship("Booking", back_populates="slot", order_by="Booking.created_at")

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_slots_end_after_start"),
        Index("idx_slots_tutor_start", "tutor_id", "start_at"),
    )

    def __repr__(self):
        return f"<Slot(tutor_id={self.tutor_id}, start_at={self.start_at}, is_booked={self.is_booked})>"
