"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database under ``tmp_path`` so that
separate sessions (and therefore concurrent transactions) can be exercised.
"""
import os

# Keep tests off the network and off the reminder loop before settings load
os.environ["RESEND_API_KEY"] = ""
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest

from app.core.database import build_engine, build_session_factory, init_db
from app.core.time_intervals import RecurrencePattern, duration_minutes
from app.models import Booking, BookingStatus, Slot, TutorProfile, User, UserRole
from app.models.booking import LIVE_STATUSES
from app.services.notification_service import NotificationService


class FakeClock:
    """Injectable clock frozen at a fixed instant until advanced"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotificationService(NotificationService):
    """Records hook calls instead of sending email; can be told to fail"""

    def __init__(self, fail_with: Exception = None, undelivered_for=()):
        super().__init__()
        self.calls = []
        self.fail_with = fail_with
        self.undelivered_for = set(undelivered_for)

    async def _record(self, hook: str, booking: Booking) -> bool:
        self.calls.append((hook, booking.id))
        if self.fail_with is not None:
            raise self.fail_with
        return booking.id not in self.undelivered_for

    async def notify_booking_confirmed(self, booking: Booking) -> bool:
        return await self._record("confirmed", booking)

    async def notify_booking_cancelled(self, booking: Booking) -> bool:
        return await self._record("cancelled", booking)

    async def notify_reminder(self, booking: Booking) -> bool:
        return await self._record("reminder", booking)

    def hooks(self, name: str):
        return [booking_id for hook, booking_id in self.calls if hook == name]


NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifications():
    return RecordingNotificationService()


@pytest.fixture
def make_user(db):
    async def _make_user(role: UserRole = UserRole.STUDENT, first_name: str = "Test", timezone_name: str = "UTC") -> User:
        user = User(
            email=f"{role.value.lower()}-{uuid.uuid4().hex[:8]}@example.com",
            first_name=first_name,
            last_name="User",
            role=role,
            timezone=timezone_name,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
def make_tutor(db, make_user):
    async def _make_tutor(hourly_rate: str = "40.00", subjects=("Math",)) -> TutorProfile:
        user = await make_user(UserRole.TUTOR, first_name="Tina")
        tutor = TutorProfile(
            user_id=user.id,
            bio="Experienced tutor",
            subjects=list(subjects),
            hourly_rate=Decimal(hourly_rate),
        )
        db.add(tutor)
        await db.commit()
        return tutor

    return _make_tutor


@pytest.fixture
def make_slot(db):
    async def _make_slot(tutor: TutorProfile, start_at: datetime, minutes: int = 60, is_booked: bool = False) -> Slot:
        end_at = start_at + timedelta(minutes=minutes)
        slot = Slot(
            tutor_id=tutor.id,
            start_at=start_at,
            end_at=end_at,
            duration_minutes=duration_minutes(start_at, end_at),
            is_booked=is_booked,
            recurrence=RecurrencePattern.NONE,
        )
        db.add(slot)
        await db.commit()
        return slot

    return _make_slot


@pytest.fixture
def make_booking(db):
    async def _make_booking(slot: Slot, student: User, status: BookingStatus = BookingStatus.CONFIRMED) -> Booking:
        booking = Booking(
            slot_id=slot.id,
            student_id=student.id,
            tutor_id=slot.tutor_id,
            subject="Math",
            status=status,
            reminder_sent=False,
        )
        slot.is_booked = status in LIVE_STATUSES
        db.add(booking)
        await db.commit()
        return booking

    return _make_booking
