from datetime import datetime
from pathlib import Path
from typing import Any, Optional
import asyncio
import logging

import resend
from jinja2 import Environment, FileSystemLoader

from app.core.config import settings
from app.core.exceptions import NotificationError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


def _format_time(value: datetime) -> str:
    return value.strftime("%a %d %b %Y, %H:%M UTC")


def build_template_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        autoescape=True,  # user text (notes, reasons, names) lands in the HTML
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["format_time"] = _format_time
    return env


class EmailService:
    """Email service for sending notifications via Resend.

    Bodies are rendered from ``app/templates/email`` with autoescaping on.
    Without a ``RESEND_API_KEY`` messages are only logged, which keeps local
    development and tests free of network calls.
    """

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.sender = f"{settings.EMAIL_FROM_NAME} <{from_email or settings.FROM_EMAIL}>"
        self.env = build_template_environment()
        if self.api_key:
            resend.api_key = self.api_key

    def render(self, template_name: str, **context: Any) -> str:
        return self.env.get_template(f"email/{template_name}").render(**context)

    async def send_email(self, to_email: str, subject: str, html_content: str) -> None:
        """Send a single email, raising NotificationError on provider failure"""
        if not self.api_key:
            logger.info(f"Email delivery disabled, would send '{subject}' to {to_email}")
            return

        email_data = {
            "from": self.sender,
            "to": to_email,
            "subject": subject,
            "html": html_content,
        }
        try:
            # The Resend SDK is synchronous
            await asyncio.to_thread(resend.Emails.send, email_data)
        except Exception as e:
            raise NotificationError(f"Email sending failed: {e}") from e
        logger.info(f"Email sent to {to_email} - Subject: {subject}")

    async def _deliver(self, to_email: str, subject: str, html_content: str) -> bool:
        try:
            await self.send_email(to_email, subject, html_content)
            return True
        except NotificationError as e:
            logger.error(f"Error sending '{subject}' email to {to_email}: {e}")
            return False

    async def send_booking_confirmation_student(
        self,
        to_email: str,
        student_name: str,
        tutor_name: str,
        subject: str,
        start_time: datetime,
        end_time: datetime,
        duration_minutes: int,
        notes: Optional[str] = None
    ) -> bool:
        """Send booking confirmation email to student"""
        html = self.render(
            "booking_confirmation_student.html",
            student_name=student_name,
            tutor_name=tutor_name,
            subject=subject,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            notes=notes,
        )
        return await self._deliver(to_email, "Tutoring Session Confirmed", html)

    async def send_booking_confirmation_tutor(
        self,
        to_email: str,
        tutor_name: str,
        student_name: str,
        subject: str,
        start_time: datetime,
        end_time: datetime,
        duration_minutes: int,
        notes: Optional[str] = None
    ) -> bool:
        """Send booking confirmation email to tutor"""
        html = self.render(
            "booking_confirmation_tutor.html",
            tutor_name=tutor_name,
            student_name=student_name,
            subject=subject,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            notes=notes,
        )
        return await self._deliver(to_email, "New Tutoring Session Booked", html)

    async def send_booking_cancellation(
        self,
        to_email: str,
        recipient_name: str,
        counterpart_label: str,
        counterpart_name: str,
        subject: str,
        start_time: datetime,
        reason: Optional[str] = None
    ) -> bool:
        """Send booking cancellation email to either party"""
        html = self.render(
            "booking_cancellation.html",
            recipient_name=recipient_name,
            counterpart_label=counterpart_label,
            counterpart_name=counterpart_name,
            subject=subject,
            start_time=start_time,
            reason=reason,
        )
        return await self._deliver(to_email, "Tutoring Session Cancelled", html)

    async def send_booking_reminder(
        self,
        to_email: str,
        recipient_name: str,
        counterpart_label: str,
        counterpart_name: str,
        subject: str,
        start_time: datetime,
        end_time: datetime
    ) -> bool:
        """Send pre-session reminder email to either party"""
        html = self.render(
            "booking_reminder.html",
            recipient_name=recipient_name,
            counterpart_label=counterpart_label,
            counterpart_name=counterpart_name,
            subject=subject,
            start_time=start_time,
            end_time=end_time,
        )
        return await self._deliver(to_email, "Upcoming Tutoring Session Reminder", html)
