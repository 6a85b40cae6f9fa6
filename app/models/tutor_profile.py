from sqlalchemy import Column, Text, Integer, Float, Boolean, ForeignKey, Numeric, Uuid, CheckConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import StringArrayType


class TutorProfile(Base):
    __tablename__ = "tutor_profiles"

    # Foreign key to user
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)

    # Profile information
    bio = Column(Text, nullable=True)
    subjects = Column(StringArrayType, nullable=False, default=list)  # Array of subject strings
    hourly_rate = Column(Numeric(10, 2), nullable=False)

    # Aggregate rating, recomputed whenever a booking is rated
    rating = Column(Float, default=0.0, nullable=False)
    total_reviews = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    user = relationship("User", back_populates="tutor_profile")
    slots = relationship("Slot", back_populates="tutor")
    bookings = relationship("Booking", back_populates="tutor")

    __table_args__ = (
        CheckConstraint("hourly_rate > 0", name="ck_tutor_profiles_hourly_rate_positive"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_tutor_profiles_rating_range"),
    )

    def __repr__(self):
        return f"<TutorProfile(user_id={self.user_id}, subjects={self.subjects}, rating={self.rating})>"
