from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import asyncio
import logging

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.database import AsyncSessionLocal, transaction
from app.core.time_intervals import utc_now
from app.models.availability import Slot
from app.models.booking import Booking, BookingStatus
from app.models.tutor_profile import TutorProfile
from app.services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)

# Only one scan may run at a time within the process
_scan_lock = asyncio.Lock()


@dataclass
class ReminderScanResult:
    found: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


async def run_reminder_scan(
    db: AsyncSession,
    notifications: NotificationService,
    clock: Callable[[], datetime] = utc_now,
    window_minutes: Optional[int] = None
) -> ReminderScanResult:
    """
    Send reminders for confirmed bookings starting within the reminder window.

    A booking is flagged ``reminder_sent`` only after its notification fully
    succeeds. A failure for one booking is logged and the scan moves on; the
    booking stays unflagged and is picked up again by the next scan.
    """
    window = window_minutes if window_minutes is not None else settings.REMINDER_WINDOW_MINUTES
    now = clock()
    window_end = now + timedelta(minutes=window)

    result = await db.execute(
        select(Booking)
        .join(Slot, Booking.slot_id == Slot.id)
        .where(
            and_(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.reminder_sent == False,  # noqa: E712
                Slot.start_at >= now,
                Slot.start_at <= window_end
            )
        )
        .options(
            selectinload(Booking.slot),
            selectinload(Booking.student),
            selectinload(Booking.tutor).selectinload(TutorProfile.user),
        )
        .order_by(Slot.start_at.asc())
    )
    bookings = list(result.scalars().all())
    # Release the read transaction before calling out to the email provider
    await db.commit()

    scan = ReminderScanResult(found=len(bookings))
    for booking in bookings:
        # Skip bookings cancelled since the select
        current_status = await db.scalar(select(Booking.status).where(Booking.id == booking.id))
        await db.commit()
        if current_status != BookingStatus.CONFIRMED:
            logger.info(f"Booking {booking.id} is no longer confirmed, skipping reminder")
            scan.skipped += 1
            continue

        try:
            delivered = await notifications.notify_reminder(booking)
        except Exception as e:
            logger.error(f"Reminder for booking {booking.id} failed: {e}")
            scan.failed += 1
            continue

        if not delivered:
            logger.warning(f"Reminder for booking {booking.id} was not delivered, will retry")
            scan.failed += 1
            continue

        # A store failure aborts the scan; unflagged bookings are retried next time
        async with transaction(db):
            flagged = await db.execute(
                update(Booking)
                .where(
                    Booking.id == booking.id,
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.reminder_sent == False  # noqa: E712
                )
                .values(reminder_sent=True)
                .execution_options(synchronize_session=False)
            )
        if flagged.rowcount != 1:
            logger.info(f"Booking {booking.id} changed during its reminder, left unflagged")
        scan.sent += 1

    if scan.found:
        logger.info(
            f"Reminder scan: {scan.found} due, {scan.sent} sent, {scan.failed} failed, {scan.skipped} skipped"
        )
    return scan


async def send_booking_reminders(
    session_factory: Optional[async_sessionmaker] = None,
    notifications: Optional[NotificationService] = None,
    clock: Callable[[], datetime] = utc_now
) -> Optional[ReminderScanResult]:
    """Background task to send reminders for upcoming bookings"""
    if _scan_lock.locked():
        logger.info("Reminder scan already running, skipping")
        return None

    async with _scan_lock:
        async with (session_factory or AsyncSessionLocal)() as db:
            try:
                return await run_reminder_scan(db, notifications or notification_service, clock=clock)
            except Exception as e:
                logger.error(f"Error sending booking reminders: {e}")
                return None


async def schedule_reminder_tasks(interval_seconds: Optional[int] = None, **scan_options):
    """
    Run the reminder scan forever at the configured interval.

    Cancelling the loop while a sweep is in progress lets that sweep finish
    before the cancellation propagates.
    """
    interval = interval_seconds if interval_seconds is not None else settings.REMINDER_INTERVAL_SECONDS
    while True:
        delay = interval
        sweep = asyncio.ensure_future(send_booking_reminders(**scan_options))
        try:
            await asyncio.shield(sweep)
        except asyncio.CancelledError:
            logger.info("Reminder scheduler cancelled, finishing current sweep")
            await sweep
            raise
        except Exception as e:
            logger.error(f"Error in reminder task scheduler: {e}")
            delay = 60  # Wait 1 minute on error
        await asyncio.sleep(delay)
