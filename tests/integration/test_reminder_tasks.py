"""Integration tests for the reminder scan"""
from datetime import timedelta
import asyncio

import pytest
from sqlalchemy import update

from app.models import Booking, BookingStatus
from app.tasks.reminder_tasks import run_reminder_scan, schedule_reminder_tasks
from tests.conftest import NOW, RecordingNotificationService


async def reminder_flags(db, *booking_ids):
    flags = []
    for booking_id in booking_ids:
        booking = await db.get(Booking, booking_id, populate_existing=True)
        flags.append(booking.reminder_sent)
    return flags


class TestReminderScan:

    async def test_only_confirmed_bookings_inside_window(
        self, db, clock, notifications, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        due = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=30)), student)
        await make_booking(await make_slot(tutor, NOW + timedelta(minutes=90)), student)
        await make_booking(await make_slot(tutor, NOW - timedelta(minutes=10)), student)
        await make_booking(
            await make_slot(tutor, NOW + timedelta(minutes=20)), student, status=BookingStatus.CANCELLED
        )
        await make_booking(
            await make_slot(tutor, NOW + timedelta(minutes=40)), student, status=BookingStatus.PENDING
        )

        result = await run_reminder_scan(db, notifications, clock=clock)

        assert (result.found, result.sent, result.failed) == (1, 1, 0)
        assert notifications.hooks("reminder") == [due.id]
        assert await reminder_flags(db, due.id) == [True]

    async def test_sent_reminders_are_not_repeated(
        self, db, clock, notifications, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        await make_booking(await make_slot(tutor, NOW + timedelta(minutes=30)), student)

        await run_reminder_scan(db, notifications, clock=clock)
        second = await run_reminder_scan(db, notifications, clock=clock)

        assert second.found == 0
        assert len(notifications.hooks("reminder")) == 1

    async def test_failure_is_isolated_and_retried(
        self, db, clock, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        failing = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=10)), student)
        healthy = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=20)), student)
        failing_id, healthy_id = failing.id, healthy.id
        notifications = RecordingNotificationService(undelivered_for=[failing_id])

        first = await run_reminder_scan(db, notifications, clock=clock)

        assert (first.found, first.sent, first.failed) == (2, 1, 1)
        assert await reminder_flags(db, failing_id, healthy_id) == [False, True]

        # Delivery recovers before the next sweep
        notifications.undelivered_for.clear()
        clock.advance(minutes=5)
        second = await run_reminder_scan(db, notifications, clock=clock)

        assert (second.found, second.sent) == (1, 1)
        assert await reminder_flags(db, failing_id, healthy_id) == [True, True]

    async def test_raising_hook_does_not_stop_scan(
        self, db, clock, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        first = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=10)), student)
        second = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=20)), student)
        notifications = RecordingNotificationService(fail_with=ConnectionError("provider down"))

        result = await run_reminder_scan(db, notifications, clock=clock)

        assert (result.found, result.sent, result.failed) == (2, 0, 2)
        assert notifications.hooks("reminder") == [first.id, second.id]
        assert await reminder_flags(db, first.id, second.id) == [False, False]

    async def test_window_can_be_narrowed(
        self, db, clock, notifications, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        await make_booking(await make_slot(tutor, NOW + timedelta(minutes=30)), student)

        result = await run_reminder_scan(db, notifications, clock=clock, window_minutes=15)

        assert result.found == 0


class CancellingNotificationService(RecordingNotificationService):
    """Cancels a booking from another session while a reminder is being sent"""

    def __init__(self, session_factory, cancel_id):
        super().__init__()
        self.session_factory = session_factory
        self.cancel_id = cancel_id

    async def notify_reminder(self, booking):
        if self.cancel_id is not None:
            async with self.session_factory() as other:
                await other.execute(
                    update(Booking).where(Booking.id == self.cancel_id).values(status=BookingStatus.CANCELLED)
                )
                await other.commit()
            self.cancel_id = None
        return await super().notify_reminder(booking)


class SlowNotificationService(RecordingNotificationService):

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def notify_reminder(self, booking):
        self.started.set()
        await asyncio.sleep(0.2)
        return await super().notify_reminder(booking)


class TestCancelledDuringScan:

    async def test_booking_cancelled_mid_scan_is_skipped(
        self, db, clock, session_factory, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        first = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=10)), student)
        second = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=20)), student)
        first_id, second_id = first.id, second.id
        notifications = CancellingNotificationService(session_factory, cancel_id=second_id)

        result = await run_reminder_scan(db, notifications, clock=clock)

        assert (result.found, result.sent, result.skipped) == (2, 1, 1)
        assert notifications.hooks("reminder") == [first_id]
        assert await reminder_flags(db, first_id, second_id) == [True, False]

    async def test_booking_cancelled_while_sending_is_not_flagged(
        self, db, clock, session_factory, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        booking = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=10)), student)
        booking_id = booking.id
        notifications = CancellingNotificationService(session_factory, cancel_id=booking_id)

        await run_reminder_scan(db, notifications, clock=clock)

        assert await reminder_flags(db, booking_id) == [False]


class TestReminderScheduler:

    async def test_cancel_lets_current_sweep_finish(
        self, db, clock, session_factory, make_tutor, make_slot, make_user, make_booking
    ):
        tutor = await make_tutor()
        student = await make_user()
        booking = await make_booking(await make_slot(tutor, NOW + timedelta(minutes=30)), student)
        booking_id = booking.id
        notifications = SlowNotificationService()

        task = asyncio.create_task(
            schedule_reminder_tasks(session_factory=session_factory, notifications=notifications, clock=clock)
        )
        await asyncio.wait_for(notifications.started.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert notifications.hooks("reminder") == [booking_id]
        assert await reminder_flags(db, booking_id) == [True]
