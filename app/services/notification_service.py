from typing import Awaitable, Callable, Optional, Set
import asyncio
import logging

from app.models.booking import Booking
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

BookingHook = Callable[[Booking], Awaitable[object]]


class NotificationService:
    """Booking notifications for students and tutors.

    Hooks receive a fully loaded booking (slot, student, tutor and tutor user)
    and never touch the database. ``dispatch`` runs a hook on its own task so
    that callers can fire it after their transaction commits without waiting.
    """

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service or EmailService()
        self._pending: Set[asyncio.Task] = set()

    async def notify_booking_confirmed(self, booking: Booking) -> bool:
        """Send booking confirmation email to both tutor and student"""
        slot = booking.slot
        student = booking.student
        tutor_user = booking.tutor.user

        results = await asyncio.gather(
            self.email_service.send_booking_confirmation_student(
                to_email=student.email,
                student_name=student.first_name,
                tutor_name=tutor_user.full_name,
                subject=booking.subject,
                start_time=slot.start_at,
                end_time=slot.end_at,
                duration_minutes=slot.duration_minutes,
                notes=booking.notes
            ),
            self.email_service.send_booking_confirmation_tutor(
                to_email=tutor_user.email,
                tutor_name=tutor_user.first_name,
                student_name=student.full_name,
                subject=booking.subject,
                start_time=slot.start_at,
                end_time=slot.end_at,
                duration_minutes=slot.duration_minutes,
                notes=booking.notes
            ),
        )
        return all(results)

    async def notify_booking_cancelled(self, booking: Booking) -> bool:
        """Send booking cancellation email to both tutor and student"""
        student = booking.student
        tutor_user = booking.tutor.user

        results = await asyncio.gather(
            self.email_service.send_booking_cancellation(
                to_email=student.email,
                recipient_name=student.first_name,
                counterpart_label="Tutor",
                counterpart_name=tutor_user.full_name,
                subject=booking.subject,
                start_time=booking.slot.start_at,
                reason=booking.cancellation_reason
            ),
            self.email_service.send_booking_cancellation(
                to_email=tutor_user.email,
                recipient_name=tutor_user.first_name,
                counterpart_label="Student",
                counterpart_name=student.full_name,
                subject=booking.subject,
                start_time=booking.slot.start_at,
                reason=booking.cancellation_reason
            ),
        )
        return all(results)

    async def notify_reminder(self, booking: Booking) -> bool:
        """Send the pre-session reminder; True only if every recipient got it"""
        slot = booking.slot
        student = booking.student
        tutor_user = booking.tutor.user

        results = await asyncio.gather(
            self.email_service.send_booking_reminder(
                to_email=student.email,
                recipient_name=student.first_name,
                counterpart_label="Tutor",
                counterpart_name=tutor_user.full_name,
                subject=booking.subject,
                start_time=slot.start_at,
                end_time=slot.end_at
            ),
            self.email_service.send_booking_reminder(
                to_email=tutor_user.email,
                recipient_name=tutor_user.first_name,
                counterpart_label="Student",
                counterpart_name=student.full_name,
                subject=booking.subject,
                start_time=slot.start_at,
                end_time=slot.end_at
            ),
        )
        return all(results)

    def dispatch(self, hook: BookingHook, booking: Booking) -> asyncio.Task:
        """Run ``hook(booking)`` in the background; failures are logged, never raised or retried"""
        task = asyncio.create_task(hook(booking))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_done(t, hook, booking))
        return task

    def _on_done(self, task: asyncio.Task, hook: BookingHook, booking: Booking) -> None:
        self._pending.discard(task)
        name = getattr(hook, "__name__", repr(hook))
        if task.cancelled():
            logger.warning(f"Notification {name} for booking {booking.id} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification {name} failed for booking {booking.id}: {error!r}")
        elif task.result() is False:
            logger.warning(f"Notification {name} for booking {booking.id} was not fully delivered")

    async def wait_pending(self) -> None:
        """Wait for in-flight notifications (used on shutdown and in tests)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Process-wide instance used by the HTTP layer and the reminder job
notification_service = NotificationService()


def get_notification_service() -> NotificationService:
    return notification_service
