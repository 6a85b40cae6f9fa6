from datetime import datetime
from typing import Callable, List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import transaction
from app.core.exceptions import (
    SlotNotFoundError,
    BookingNotFoundError,
    SlotAlreadyBookedError,
    PastSlotError,
    ForbiddenError,
    AlreadyCancelledError,
    AlreadyRatedError,
    NotCompletedError,
    InvalidRatingError,
    InvalidStatusTransitionError,
)
from app.core.rating import is_valid_rating, recompute_rating
from app.core.time_intervals import utc_now
from app.models.availability import Slot
from app.models.booking import Booking, BookingStatus
from app.models.tutor_profile import TutorProfile
from app.models.user import User, UserRole
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class BookingService:
    """
    Atomic booking operations coupling a Slot to a Booking.

    Every mutation runs in one transaction on the injected session. Rows are
    read with ``FOR UPDATE`` and then written with compare-and-set UPDATEs
    (``WHERE is_booked = false``, ``WHERE status = <observed>``), so two
    concurrent callers can never both win, even on backends that ignore row
    locks. Notifications are dispatched only after the transaction commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.db = db
        self.notifications = notifications
        self.clock = clock

    async def create_booking(
        self,
        student_id: uuid.UUID,
        slot_id: uuid.UUID,
        subject: str,
        notes: Optional[str] = None
    ) -> Booking:
        """Book a free, future slot for a student"""
        async with transaction(self.db):
            result = await self.db.execute(
                select(Slot)
                .where(Slot.id == slot_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            slot = result.scalar_one_or_none()

            if not slot:
                raise SlotNotFoundError()
            if slot.is_booked:
                raise SlotAlreadyBookedError()
            if slot.start_at < self.clock():
                raise PastSlotError("Cannot book past slots")

            claimed = await self.db.execute(
                update(Slot)
                .where(Slot.id == slot_id, Slot.is_booked == False)  # noqa: E712
                .values(is_booked=True)
                .execution_options(synchronize_session="evaluate")
            )
            if claimed.rowcount != 1:
                # Another transaction flipped the slot between our read and write
                raise SlotAlreadyBookedError()

            booking = Booking(
                slot_id=slot.id,
                student_id=student_id,
                tutor_id=slot.tutor_id,
                subject=subject,
                notes=notes,
                status=BookingStatus.CONFIRMED,
                reminder_sent=False
            )
            self.db.add(booking)
            try:
                await self.db.flush()
            except IntegrityError as e:
                raise SlotAlreadyBookedError() from e

            booking = await self._load_booking(booking.id)

        logger.info(f"Booking {booking.id} created for slot {slot_id} by student {student_id}")
        self._dispatch("notify_booking_confirmed", booking)
        return booking

    async def cancel_booking(
        self,
        requester_id: uuid.UUID,
        booking_id: uuid.UUID,
        reason: Optional[str] = None
    ) -> Booking:
        """Cancel a booking as its student or tutor and free the slot"""
        async with transaction(self.db):
            booking = await self._load_booking(booking_id, lock=True)
            if not booking:
                raise BookingNotFoundError()

            if booking.student_id != requester_id and booking.tutor.user_id != requester_id:
                raise ForbiddenError()

            await self._cancel_locked(booking, reason)

        logger.info(f"Booking {booking.id} cancelled by {requester_id}")
        self._dispatch("notify_booking_cancelled", booking)
        return booking

    async def rate_booking(
        self,
        student_id: uuid.UUID,
        booking_id: uuid.UUID,
        rating: int,
        review: Optional[str] = None
    ) -> Booking:
        """Rate a completed booking and refresh the tutor's aggregate rating"""
        if not is_valid_rating(rating):
            raise InvalidRatingError()

        async with transaction(self.db):
            booking = await self._load_booking(booking_id, lock=True)
            if not booking:
                raise BookingNotFoundError()

            # Only the student who made the booking can rate
            if booking.student_id != student_id:
                raise ForbiddenError("You can only rate your own bookings")

            if booking.status != BookingStatus.COMPLETED:
                raise NotCompletedError()

            if booking.rating is not None:
                raise AlreadyRatedError()

            rated = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.rating.is_(None))
                .values(rating=rating, review=review)
                .execution_options(synchronize_session="evaluate")
            )
            if rated.rowcount != 1:
                raise AlreadyRatedError()

            await self._refresh_tutor_rating(booking.tutor_id)

        logger.info(f"Booking {booking.id} rated {rating} by student {student_id}")
        return booking

    async def update_booking_status(
        self,
        booking_id: uuid.UUID,
        new_status: BookingStatus,
        reason: Optional[str] = None
    ) -> Booking:
        """Administrative status change along the legal edges only"""
        new_status = BookingStatus(new_status)

        async with transaction(self.db):
            booking = await self._load_booking(booking_id, lock=True)
            if not booking:
                raise BookingNotFoundError()

            if new_status == BookingStatus.CANCELLED:
                await self._cancel_locked(booking, reason)
            else:
                current = booking.status
                if not current.can_transition_to(new_status):
                    raise InvalidStatusTransitionError(
                        f"Cannot change booking status from {current.value} to {new_status.value}"
                    )
                changed = await self.db.execute(
                    update(Booking)
                    .where(Booking.id == booking.id, Booking.status == current)
                    .values(status=new_status)
                    .execution_options(synchronize_session="evaluate")
                )
                if changed.rowcount != 1:
                    raise InvalidStatusTransitionError("Booking status was changed concurrently")

        logger.info(f"Booking {booking.id} moved to {new_status.value}")
        if new_status == BookingStatus.CANCELLED:
            self._dispatch("notify_booking_cancelled", booking)
        return booking

    async def get_booking(self, booking_id: uuid.UUID) -> Booking:
        booking = await self._load_booking(booking_id)
        if not booking:
            raise BookingNotFoundError()
        return booking

    async def list_bookings(
        self,
        user: User,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Booking], int]:
        """Bookings visible to ``user``, newest first, with the total count"""
        conditions = []
        if user.role == UserRole.STUDENT:
            conditions.append(Booking.student_id == user.id)
        elif user.role == UserRole.TUTOR:
            result = await self.db.execute(
                select(TutorProfile.id).where(TutorProfile.user_id == user.id)
            )
            tutor_id = result.scalar_one_or_none()
            if tutor_id is None:
                return [], 0
            conditions.append(Booking.tutor_id == tutor_id)

        if status:
            conditions.append(Booking.status == BookingStatus(status))

        total = await self.db.execute(
            select(func.count(Booking.id)).where(*conditions)
        )
        result = await self.db.execute(
            self._booking_query()
            .where(*conditions)
            .order_by(Booking.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total.scalar_one()

    def _booking_query(self):
        return select(Booking).options(
            selectinload(Booking.slot),
            selectinload(Booking.student),
            selectinload(Booking.tutor).selectinload(TutorProfile.user),
        )

    async def _load_booking(self, booking_id: uuid.UUID, lock: bool = False) -> Optional[Booking]:
        query = self._booking_query().where(Booking.id == booking_id)
        if lock:
            # Re-read locked rows even if this session already holds them
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _cancel_locked(self, booking: Booking, reason: Optional[str]) -> None:
        current = booking.status
        if current == BookingStatus.CANCELLED:
            raise AlreadyCancelledError()
        if not current.can_transition_to(BookingStatus.CANCELLED):
            raise InvalidStatusTransitionError(f"Cannot cancel a {current.value.lower()} booking")

        cancelled = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == current)
            .values(status=BookingStatus.CANCELLED, cancellation_reason=reason)
            .execution_options(synchronize_session="evaluate")
        )
        if cancelled.rowcount != 1:
            # A concurrent cancel won; the slot was already freed by it
            raise AlreadyCancelledError()

        await self.db.execute(
            update(Slot)
            .where(Slot.id == booking.slot_id)
            .values(is_booked=False)
            .execution_options(synchronize_session="evaluate")
        )

    async def _refresh_tutor_rating(self, tutor_id: uuid.UUID) -> None:
        await self.db.execute(
            select(TutorProfile.id).where(TutorProfile.id == tutor_id).with_for_update()
        )
        result = await self.db.execute(
            select(Booking.rating).where(
                Booking.tutor_id == tutor_id,
                Booking.rating.is_not(None)
            )
        )
        mean, count = recompute_rating(result.scalars().all())

        await self.db.execute(
            update(TutorProfile)
            .where(TutorProfile.id == tutor_id)
            .values(rating=mean, total_reviews=count)
            .execution_options(synchronize_session="evaluate")
        )
        logger.info(f"Tutor {tutor_id} rating recomputed: {mean} over {count} reviews")

    def _dispatch(self, hook_name: str, booking: Booking) -> None:
        if self.notifications is None:
            return
        self.notifications.dispatch(getattr(self.notifications, hook_name), booking)
