from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.time_intervals import ensure_utc
from app.models.availability import Slot
from app.models.booking import Booking, BookingStatus
from app.models.tutor_profile import TutorProfile
from app.models.user import User, UserRole


class AdminService:
    """Read-only reporting over bookings for administrators"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_all_bookings(
        self,
        status: Optional[BookingStatus] = None,
        tutor_id: Optional[uuid.UUID] = None,
        student_id: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Booking], int]:
        """Filtered booking listing; date filters apply to the slot start time"""
        conditions = []
        if status:
            conditions.append(Booking.status == BookingStatus(status))
        if tutor_id:
            conditions.append(Booking.tutor_id == tutor_id)
        if student_id:
            conditions.append(Booking.student_id == student_id)
        if start_date:
            conditions.append(Slot.start_at >= ensure_utc(start_date))
        if end_date:
            conditions.append(Slot.start_at <= ensure_utc(end_date))

        total = await self.db.execute(
            select(func.count(Booking.id))
            .join(Slot, Booking.slot_id == Slot.id)
            .where(*conditions)
        )
        result = await self.db.execute(
            select(Booking)
            .join(Slot, Booking.slot_id == Slot.id)
            .where(*conditions)
            .options(
                selectinload(Booking.slot),
                selectinload(Booking.student),
                selectinload(Booking.tutor).selectinload(TutorProfile.user),
            )
            .order_by(Booking.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total.scalar_one()

    async def get_statistics(self) -> Dict[str, Any]:
        """Platform counters and revenue from confirmed and completed bookings"""
        role_counts = dict(
            (await self.db.execute(select(User.role, func.count(User.id)).group_by(User.role))).all()
        )
        status_counts = dict(
            (await self.db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status))).all()
        )

        revenue_rows = await self.db.execute(
            select(TutorProfile.hourly_rate, Slot.duration_minutes)
            .select_from(Booking)
            .join(Slot, Booking.slot_id == Slot.id)
            .join(TutorProfile, Booking.tutor_id == TutorProfile.id)
            .where(Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]))
        )
        total_revenue = sum(
            (Decimal(str(rate)) * Decimal(minutes) / Decimal(60) for rate, minutes in revenue_rows.all()),
            Decimal("0"),
        )

        return {
            "total_users": sum(role_counts.values()),
            "total_students": role_counts.get(UserRole.STUDENT, 0),
            "total_tutors": role_counts.get(UserRole.TUTOR, 0),
            "total_bookings": sum(status_counts.values()),
            "pending_bookings": status_counts.get(BookingStatus.PENDING, 0),
            "confirmed_bookings": status_counts.get(BookingStatus.CONFIRMED, 0),
            "completed_bookings": status_counts.get(BookingStatus.COMPLETED, 0),
            "cancelled_bookings": status_counts.get(BookingStatus.CANCELLED, 0),
            "total_revenue": float(total_revenue.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
        }
