from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import logging
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.database import transaction
from app.core.exceptions import (
    InvalidRangeError,
    PastSlotError,
    OverlapConflictError,
    NotFoundError,
    SlotNotFoundError,
    ForbiddenError,
    SlotLockedError,
)
from app.core.time_intervals import (
    RecurrencePattern,
    expand_recurrence,
    duration_minutes,
    ensure_utc,
    utc_now,
)
from app.models.availability import Slot
from app.models.booking import Booking
from app.models.tutor_profile import TutorProfile

logger = logging.getLogger(__name__)


@dataclass
class RecurringSlotResult:
    created_count: int = 0
    skipped_count: int = 0
    slots: List[Slot] = field(default_factory=list)


class SlotService:
    """Tutor slot lifecycle with per-tutor overlap enforcement.

    No two slots of the same tutor may overlap on ``[start_at, end_at)``.
    Creation locks the tutor profile row so concurrent requests for one tutor
    serialize and each overlap check sees every committed slot.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    async def get_tutor_for_user(self, user_id: uuid.UUID) -> TutorProfile:
        result = await self.db.execute(
            select(TutorProfile).where(TutorProfile.user_id == user_id)
        )
        tutor = result.scalar_one_or_none()
        if not tutor:
            raise NotFoundError("Tutor profile not found. Please create a tutor profile first.")
        return tutor

    async def create_slot(
        self,
        tutor_id: uuid.UUID,
        start_at: datetime,
        end_at: datetime,
        duration: Optional[int] = None
    ) -> Slot:
        """Create a single non-recurring slot"""
        start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
        slot_duration = self._validate_new_range(start_at, end_at, duration)

        async with transaction(self.db):
            await self._lock_tutor(tutor_id)

            if await self._find_overlap(tutor_id, start_at, end_at) is not None:
                raise OverlapConflictError()

            slot = Slot(
                tutor_id=tutor_id,
                start_at=start_at,
                end_at=end_at,
                duration_minutes=slot_duration,
                is_booked=False,
                recurrence=RecurrencePattern.NONE
            )
            self.db.add(slot)

        logger.info(f"Created slot {slot.id} for tutor {tutor_id} at {start_at.isoformat()}")
        return slot

    async def create_recurring_slots(
        self,
        tutor_id: uuid.UUID,
        start_at: datetime,
        end_at: datetime,
        pattern: RecurrencePattern,
        recurrence_end: Optional[datetime] = None,
        max_count: Optional[int] = None,
        duration: Optional[int] = None
    ) -> RecurringSlotResult:
        """Expand a recurring template into slots, skipping occurrences that overlap.

        A colliding occurrence never fails the batch; it is counted as skipped
        and expansion continues with the next candidate.
        """
        start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
        slot_duration = self._validate_new_range(start_at, end_at, duration)
        pattern = RecurrencePattern(pattern)

        horizon = (
            ensure_utc(recurrence_end)
            if recurrence_end
            else start_at + timedelta(days=settings.RECURRENCE_DEFAULT_HORIZON_DAYS)
        )
        if horizon <= start_at:
            raise InvalidRangeError("Recurrence end must be after start time")

        occurrences = expand_recurrence(
            start_at,
            end_at,
            pattern,
            horizon_end=horizon,
            max_count=max_count if max_count is not None else settings.RECURRENCE_MAX_COUNT,
        )

        result = RecurringSlotResult()
        async with transaction(self.db):
            await self._lock_tutor(tutor_id)

            for occurrence_start, occurrence_end in occurrences:
                if await self._find_overlap(tutor_id, occurrence_start, occurrence_end) is not None:
                    result.skipped_count += 1
                    continue

                slot = Slot(
                    tutor_id=tutor_id,
                    start_at=occurrence_start,
                    end_at=occurrence_end,
                    duration_minutes=slot_duration,
                    is_booked=False,
                    recurrence=pattern,
                    recurrence_end=horizon
                )
                self.db.add(slot)
                # Flush so the next overlap check sees this occurrence
                await self.db.flush()
                result.slots.append(slot)
                result.created_count += 1

        logger.info(
            f"Recurring {pattern.value} slots for tutor {tutor_id}: "
            f"{result.created_count} created, {result.skipped_count} skipped"
        )
        return result

    async def update_slot(
        self,
        slot_id: uuid.UUID,
        requester_id: uuid.UUID,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        duration: Optional[int] = None
    ) -> Slot:
        """Change the times of an unbooked slot owned by the requester.

        Only the range invariant is re-validated. Overlap with the tutor's
        other slots is not re-checked here, unlike create_slot.
        """
        async with transaction(self.db):
            slot = await self._load_owned_slot(slot_id, requester_id)
            if slot.is_booked:
                raise SlotLockedError("Cannot update booked slot")

            new_start = ensure_utc(start_at) if start_at else slot.start_at
            new_end = ensure_utc(end_at) if end_at else slot.end_at
            if new_start >= new_end:
                raise InvalidRangeError()

            computed = duration_minutes(new_start, new_end)
            if duration is not None and duration != computed:
                raise InvalidRangeError(
                    f"Duration of {duration} minutes does not match the slot length of {computed} minutes"
                )

            slot.start_at = new_start
            slot.end_at = new_end
            slot.duration_minutes = computed

        logger.info(f"Updated slot {slot.id} to {slot.start_at.isoformat()} - {slot.end_at.isoformat()}")
        return slot

    async def delete_slot(self, slot_id: uuid.UUID, requester_id: uuid.UUID) -> None:
        """Delete an unbooked slot owned by the requester"""
        async with transaction(self.db):
            slot = await self._load_owned_slot(slot_id, requester_id)
            if slot.is_booked:
                raise SlotLockedError("Cannot delete booked slot")

            # Bookings are never destroyed, so slots they reference must stay
            history = await self.db.execute(
                select(func.count(Booking.id)).where(Booking.slot_id == slot.id)
            )
            if history.scalar_one() > 0:
                raise SlotLockedError("Cannot delete a slot with booking history")

            await self.db.delete(slot)

        logger.info(f"Deleted slot {slot_id}")

    async def query_available(
        self,
        tutor_id: Optional[uuid.UUID] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        available: bool = False
    ) -> List[Slot]:
        """List slots ordered by start time.

        With ``available`` set, booked slots and slots that already started are
        excluded regardless of ``from_time``.
        """
        conditions = []
        if tutor_id:
            conditions.append(Slot.tutor_id == tutor_id)

        lower_bound = ensure_utc(from_time) if from_time else None
        if available:
            now = self.clock()
            lower_bound = max(lower_bound, now) if lower_bound else now
            conditions.append(Slot.is_booked == False)  # noqa: E712

        if lower_bound:
            conditions.append(Slot.start_at >= lower_bound)
        if to_time:
            conditions.append(Slot.start_at <= ensure_utc(to_time))

        query = (
            select(Slot)
            .options(selectinload(Slot.tutor).selectinload(TutorProfile.user))
            .order_by(Slot.start_at.asc())
        )
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_tutor_slots(self, tutor_id: uuid.UUID) -> List[Slot]:
        """All slots of one tutor with their bookings and students"""
        result = await self.db.execute(
            select(Slot)
            .where(Slot.tutor_id == tutor_id)
            .options(selectinload(Slot.bookings).selectinload(Booking.student))
            .order_by(Slot.start_at.asc())
        )
        return list(result.scalars().all())

    def _validate_new_range(self, start_at: datetime, end_at: datetime, duration: Optional[int]) -> int:
        if start_at >= end_at:
            raise InvalidRangeError()

        computed = duration_minutes(start_at, end_at)
        if duration is not None and duration != computed:
            raise InvalidRangeError(
                f"Duration of {duration} minutes does not match the slot length of {computed} minutes"
            )

        if start_at < self.clock():
            raise PastSlotError("Cannot create slots in the past")

        return computed

    async def _lock_tutor(self, tutor_id: uuid.UUID) -> TutorProfile:
        result = await self.db.execute(
            select(TutorProfile).where(TutorProfile.id == tutor_id).with_for_update()
        )
        tutor = result.scalar_one_or_none()
        if not tutor:
            raise NotFoundError("Tutor profile not found")
        return tutor

    async def _find_overlap(self, tutor_id: uuid.UUID, start_at: datetime, end_at: datetime) -> Optional[Slot]:
        # Half-open overlap: existing.start < new.end and existing.end > new.start
        result = await self.db.execute(
            select(Slot).where(
                and_(
                    Slot.tutor_id == tutor_id,
                    Slot.start_at < end_at,
                    Slot.end_at > start_at
                )
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def _load_owned_slot(self, slot_id: uuid.UUID, requester_id: uuid.UUID) -> Slot:
        result = await self.db.execute(
            select(Slot)
            .where(Slot.id == slot_id)
            .options(selectinload(Slot.tutor))
            .with_for_update()
        )
        slot = result.scalar_one_or_none()
        if not slot:
            raise SlotNotFoundError()
        if slot.tutor.user_id != requester_id:
            raise ForbiddenError()
        return slot
