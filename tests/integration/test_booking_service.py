"""Integration tests for BookingService: atomic slot/booking transitions"""
from datetime import timedelta
import asyncio
import uuid

import pytest
from sqlalchemy import select, func

from app.core.exceptions import (
    AlreadyCancelledError,
    AlreadyRatedError,
    BookingNotFoundError,
    ForbiddenError,
    InvalidRatingError,
    InvalidStatusTransitionError,
    NotCompletedError,
    PastSlotError,
    SlotAlreadyBookedError,
    SlotNotFoundError,
)
from app.models import Booking, BookingStatus, Slot, TutorProfile, User, UserRole
from app.services.booking_service import BookingService
from tests.conftest import NOW, RecordingNotificationService


async def fresh(db, model, ident):
    return await db.get(model, ident, populate_existing=True)


class TestCreateBooking:

    async def test_books_free_slot_and_notifies(self, db, clock, notifications, make_tutor, make_slot, make_user):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        service = BookingService(db, notifications, clock=clock)

        booking = await service.create_booking(student.id, slot.id, "Algebra", "Chapter 3")
        await notifications.wait_pending()

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.tutor_id == tutor.id
        assert booking.reminder_sent is False
        assert booking.slot.is_booked is True
        assert booking.tutor.user.first_name == "Tina"
        assert (await fresh(db, Slot, slot.id)).is_booked is True
        assert notifications.hooks("confirmed") == [booking.id]

    async def test_booked_slot_is_rejected(self, db, clock, make_tutor, make_slot, make_user):
        tutor = await make_tutor()
        first, second = await make_user(), await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        slot_id, second_id = slot.id, second.id
        service = BookingService(db, clock=clock)
        await service.create_booking(first.id, slot_id, "Algebra")

        with pytest.raises(SlotAlreadyBookedError):
            await service.create_booking(second_id, slot_id, "Algebra")

        total = await db.execute(select(func.count(Booking.id)).where(Booking.slot_id == slot_id))
        assert total.scalar_one() == 1

    async def test_past_slot_is_rejected(self, db, clock, make_tutor, make_slot, make_user):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW - timedelta(minutes=1))
        slot_id = slot.id
        service = BookingService(db, clock=clock)

        with pytest.raises(PastSlotError):
            await service.create_booking(student.id, slot_id, "Algebra")

        assert (await fresh(db, Slot, slot_id)).is_booked is False

    async def test_missing_slot(self, db, clock, make_user):
        student = await make_user()
        service = BookingService(db, clock=clock)

        with pytest.raises(SlotNotFoundError):
            await service.create_booking(student.id, uuid.uuid4(), "Algebra")

    async def test_concurrent_requests_book_slot_once(
        self, db, session_factory, clock, make_tutor, make_slot, make_user
    ):
        tutor = await make_tutor()
        students = [await make_user() for _ in range(8)]
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        slot_id = slot.id

        async def attempt(student_id):
            async with session_factory() as session:
                return await BookingService(session, clock=clock).create_booking(student_id, slot_id, "Algebra")

        results = await asyncio.gather(*(attempt(s.id) for s in students), return_exceptions=True)

        successes = [r for r in results if isinstance(r, Booking)]
        failures = [r for r in results if not isinstance(r, Booking)]
        assert len(successes) == 1
        assert len(failures) == 7
        assert all(isinstance(f, SlotAlreadyBookedError) for f in failures)

        assert (await fresh(db, Slot, slot_id)).is_booked is True
        statuses = await db.execute(select(Booking.status).where(Booking.slot_id == slot_id))
        assert statuses.scalars().all() == [BookingStatus.CONFIRMED]

    async def test_cancelled_slot_can_be_rebooked(self, db, clock, make_tutor, make_slot, make_user):
        tutor = await make_tutor()
        first, second = await make_user(), await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        service = BookingService(db, clock=clock)

        original = await service.create_booking(first.id, slot.id, "Algebra")
        await service.cancel_booking(first.id, original.id, "Sick")
        rebooked = await service.create_booking(second.id, slot.id, "Geometry")

        assert rebooked.status == BookingStatus.CONFIRMED
        assert (await fresh(db, Booking, original.id)).status == BookingStatus.CANCELLED
        assert (await fresh(db, Slot, slot.id)).is_booked is True

    async def test_failing_notification_does_not_fail_booking(self, db, clock, make_tutor, make_slot, make_user):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        notifications = RecordingNotificationService(fail_with=RuntimeError("smtp down"))
        service = BookingService(db, notifications, clock=clock)

        booking = await service.create_booking(student.id, slot.id, "Algebra")
        await notifications.wait_pending()

        assert notifications.hooks("confirmed") == [booking.id]
        assert (await fresh(db, Booking, booking.id)).status == BookingStatus.CONFIRMED


class TestCancelBooking:

    async def test_tutor_can_cancel_and_slot_is_freed(
        self, db, clock, notifications, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student)
        service = BookingService(db, notifications, clock=clock)

        cancelled = await service.cancel_booking(tutor.user_id, booking.id, "Conflict")
        await notifications.wait_pending()

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "Conflict"
        assert (await fresh(db, Slot, slot.id)).is_booked is False
        assert notifications.hooks("cancelled") == [booking.id]

    async def test_stranger_cannot_cancel(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student, stranger = await make_user(), await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student)
        slot_id = slot.id
        service = BookingService(db, clock=clock)

        with pytest.raises(ForbiddenError):
            await service.cancel_booking(stranger.id, booking.id)

        assert (await fresh(db, Slot, slot_id)).is_booked is True

    async def test_second_cancel_fails(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student)
        booking_id, student_id = booking.id, student.id
        service = BookingService(db, clock=clock)
        await service.cancel_booking(student_id, booking_id)

        with pytest.raises(AlreadyCancelledError):
            await service.cancel_booking(student_id, booking_id)

    async def test_completed_booking_cannot_be_cancelled(
        self, db, clock, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW - timedelta(hours=2))
        booking = await make_booking(slot, student, status=BookingStatus.COMPLETED)
        booking_id = booking.id
        service = BookingService(db, clock=clock)

        with pytest.raises(InvalidStatusTransitionError):
            await service.cancel_booking(student.id, booking_id)

        assert (await fresh(db, Booking, booking_id)).status == BookingStatus.COMPLETED

    async def test_missing_booking(self, db, clock, make_user):
        student = await make_user()
        service = BookingService(db, clock=clock)

        with pytest.raises(BookingNotFoundError):
            await service.cancel_booking(student.id, uuid.uuid4())


class TestRateBooking:

    async def test_rating_requires_completion(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student)
        service = BookingService(db, clock=clock)

        with pytest.raises(NotCompletedError):
            await service.rate_booking(student.id, booking.id, 5)

    async def test_invalid_rating_is_checked_first(self, db, clock, make_user):
        student = await make_user()
        service = BookingService(db, clock=clock)

        # The booking does not even exist; the rating value is rejected before lookup
        with pytest.raises(InvalidRatingError):
            await service.rate_booking(student.id, uuid.uuid4(), 6)
        with pytest.raises(InvalidRatingError):
            await service.rate_booking(student.id, uuid.uuid4(), 0)

    async def test_only_booking_student_can_rate(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student, other = await make_user(), await make_user()
        slot = await make_slot(tutor, NOW - timedelta(hours=2))
        booking = await make_booking(slot, student, status=BookingStatus.COMPLETED)
        service = BookingService(db, clock=clock)

        with pytest.raises(ForbiddenError):
            await service.rate_booking(other.id, booking.id, 4)

    async def test_rating_twice_fails(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW - timedelta(hours=2))
        booking = await make_booking(slot, student, status=BookingStatus.COMPLETED)
        booking_id, student_id = booking.id, student.id
        service = BookingService(db, clock=clock)
        await service.rate_booking(student_id, booking_id, 4, "Great")

        with pytest.raises(AlreadyRatedError):
            await service.rate_booking(student_id, booking_id, 5)

        stored = await fresh(db, Booking, booking_id)
        assert (stored.rating, stored.review) == (4, "Great")

    async def test_tutor_aggregate_is_recomputed(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        service = BookingService(db, clock=clock)

        for hours_ago, stars in [(10, 5), (8, 4), (6, 5)]:
            slot = await make_slot(tutor, NOW - timedelta(hours=hours_ago))
            booking = await make_booking(slot, student, status=BookingStatus.COMPLETED)
            await service.rate_booking(student.id, booking.id, stars)

        profile = await fresh(db, TutorProfile, tutor.id)
        assert profile.rating == 4.67
        assert profile.total_reviews == 3


class TestAdminStatusChanges:

    async def test_confirmed_to_completed(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW - timedelta(hours=2))
        booking = await make_booking(slot, student)
        service = BookingService(db, clock=clock)

        updated = await service.update_booking_status(booking.id, BookingStatus.COMPLETED)

        assert updated.status == BookingStatus.COMPLETED
        # Completing keeps the slot taken
        assert (await fresh(db, Slot, slot.id)).is_booked is True

    async def test_illegal_edge_is_rejected(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW - timedelta(hours=2))
        booking = await make_booking(slot, student, status=BookingStatus.COMPLETED)
        service = BookingService(db, clock=clock)

        with pytest.raises(InvalidStatusTransitionError):
            await service.update_booking_status(booking.id, BookingStatus.CONFIRMED)

    async def test_pending_can_be_confirmed(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student, status=BookingStatus.PENDING)
        service = BookingService(db, clock=clock)

        updated = await service.update_booking_status(booking.id, BookingStatus.CONFIRMED)

        assert updated.status == BookingStatus.CONFIRMED

    async def test_admin_cancel_frees_slot_and_notifies(
        self, db, clock, notifications, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        slot = await make_slot(tutor, NOW + timedelta(hours=2))
        booking = await make_booking(slot, student)
        service = BookingService(db, notifications, clock=clock)

        updated = await service.update_booking_status(booking.id, BookingStatus.CANCELLED, "Tutor unavailable")
        await notifications.wait_pending()

        assert updated.status == BookingStatus.CANCELLED
        assert (await fresh(db, Slot, slot.id)).is_booked is False
        assert notifications.hooks("cancelled") == [booking.id]


class TestListBookings:

    async def test_visibility_by_role(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor, other_tutor = await make_tutor(), await make_tutor()
        student, other_student = await make_user(), await make_user()
        admin = await make_user(UserRole.ADMIN)
        mine = await make_booking(await make_slot(tutor, NOW + timedelta(hours=1)), student)
        await make_booking(await make_slot(other_tutor, NOW + timedelta(hours=1)), other_student)
        service = BookingService(db, clock=clock)

        student_view, student_total = await service.list_bookings(student)
        tutor_user = await db.get(User, tutor.user_id)
        tutor_view, _ = await service.list_bookings(tutor_user)
        admin_view, admin_total = await service.list_bookings(admin)

        assert [b.id for b in student_view] == [mine.id]
        assert student_total == 1
        assert [b.id for b in tutor_view] == [mine.id]
        assert admin_total == 2
        assert len(admin_view) == 2

    async def test_tutor_without_profile_sees_nothing(self, db, clock, make_user):
        tutor_user = await make_user(UserRole.TUTOR)
        service = BookingService(db, clock=clock)

        assert await service.list_bookings(tutor_user) == ([], 0)

    async def test_status_filter_and_paging(self, db, clock, make_tutor, make_slot, make_user, make_booking):
        tutor = await make_tutor()
        student = await make_user()
        for hours in (1, 2, 3):
            await make_booking(await make_slot(tutor, NOW + timedelta(hours=hours)), student)
        await make_booking(
            await make_slot(tutor, NOW + timedelta(hours=4)), student, status=BookingStatus.CANCELLED
        )
        service = BookingService(db, clock=clock)

        page, total = await service.list_bookings(student, BookingStatus.CONFIRMED, page=2, limit=2)

        assert total == 3
        assert len(page) == 1
