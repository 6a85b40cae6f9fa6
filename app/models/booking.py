from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Text, Enum, Index, Uuid, CheckConstraint, text
from sqlalchemy.orm import relationship
import enum

from app.core.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return BookingStatus(target) in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# Statuses that hold the slot
LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(Base):
    __tablename__ = "bookings"

    # Slot and user relationships
    slot_id = Column(Uuid(as_uuid=True), ForeignKey("slots.id"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    tutor_id = Column(Uuid(as_uuid=True), ForeignKey("tutor_profiles.id"), nullable=False)  # copied from the slot

    # Session details
    subject = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False)
    cancellation_reason = Column(Text, nullable=True)

    # Review
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)

    reminder_sent = Column(Boolean, default=False, nullable=False)

    # Relationships
    slot = relationship("Slot", back_populates="bookings")
    student = relationship("User", foreign_keys=[student_id], back_populates="bookings_as_student")
    tutor = relationship("TutorProfile", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_bookings_rating_range"),
        # At most one live booking per slot; cancelled bookings free the slot for rebooking
        Index(
            "uq_bookings_live_slot",
            "slot_id",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index("idx_bookings_reminder", "status", "reminder_sent"),
        Index("idx_bookings_tutor", "tutor_id"),
        Index("idx_bookings_student", "student_id"),
    )

    def __repr__(self):
        return f"<Booking(student_id={self.student_id}, tutor_id={self.tutor_id}, slot_id={self.slot_id}, status={self.status})>"
