from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
import uuid

from app.core.database import get_db
from app.core.auth import require_roles
from app.core.time_intervals import RecurrencePattern
from app.models.tutor_profile import TutorProfile
from app.models.user import User, UserRole
from app.schemas.slot import (
    SlotCreateRequest,
    SlotUpdateRequest,
    SlotResponse,
    TutorSlotResponse,
    SlotBookingSummary,
    TutorSummary,
    RecurringSlotResponse,
)
from app.services.slot_service import SlotService

router = APIRouter()


def _tutor_summary(tutor: TutorProfile) -> TutorSummary:
    return TutorSummary(
        id=tutor.id,
        name=tutor.user.full_name,
        subjects=tutor.subjects or [],
        hourly_rate=float(tutor.hourly_rate),
        rating=tutor.rating,
        total_reviews=tutor.total_reviews,
    )


@router.get("")
async def get_slots(
    tutor_id: Optional[uuid.UUID] = Query(None, description="Filter by tutor profile"),
    start_date: Optional[datetime] = Query(None, description="Earliest start time"),
    end_date: Optional[datetime] = Query(None, description="Latest start time"),
    available: bool = Query(False, description="Only free slots that have not started"),
    db: AsyncSession = Depends(get_db)
):
    """List slots, optionally only the bookable ones"""
    slot_service = SlotService(db)
    slots = await slot_service.query_available(
        tutor_id=tutor_id,
        from_time=start_date,
        to_time=end_date,
        available=available
    )
    return {
        "status": "success",
        "data": [SlotResponse.from_slot(slot, _tutor_summary(slot.tutor)) for slot in slots]
    }


@router.get("/my-slots")
async def get_my_slots(
    current_user: User = Depends(require_roles(UserRole.TUTOR)),
    db: AsyncSession = Depends(get_db)
):
    """All of the current tutor's slots with their booking history"""
    slot_service = SlotService(db)
    tutor = await slot_service.get_tutor_for_user(current_user.id)
    slots = await slot_service.get_tutor_slots(tutor.id)

    data = []
    for slot in slots:
        response = TutorSlotResponse.from_slot(slot)
        response.bookings = [
            SlotBookingSummary(
                id=booking.id,
                status=booking.status.value,
                subject=booking.subject,
                student_name=booking.student.full_name,
                student_email=booking.student.email,
            )
            for booking in slot.bookings
        ]
        data.append(response)

    return {"status": "success", "data": data}


@router.get("/tutor/{tutor_id}")
async def get_tutor_available_slots(
    tutor_id: uuid.UUID,
    db: AsyncSession = Depends(get_db)
):
    """Bookable slots of one tutor"""
    slot_service = SlotService(db)
    slots = await slot_service.query_available(tutor_id=tutor_id, available=True)
    return {
        "status": "success",
        "data": [SlotResponse.from_slot(slot) for slot in slots]
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_slot(
    request: SlotCreateRequest,
    current_user: User = Depends(require_roles(UserRole.TUTOR)),
    db: AsyncSession = Depends(get_db)
):
    """Create a slot, or a series of slots when a recurrence is given"""
    slot_service = SlotService(db)
    tutor = await slot_service.get_tutor_for_user(current_user.id)

    if request.recurrence != RecurrencePattern.NONE:
        result = await slot_service.create_recurring_slots(
            tutor.id,
            request.start_time,
            request.end_time,
            request.recurrence,
            recurrence_end=request.recurrence_end,
            max_count=request.recurrence_count,
            duration=request.duration
        )
        return {
            "status": "success",
            "message": f"Created {result.created_count} recurring slots",
            "data": RecurringSlotResponse(
                created_count=result.created_count,
                skipped_count=result.skipped_count,
                slots=[SlotResponse.from_slot(slot) for slot in result.slots]
            )
        }

    slot = await slot_service.create_slot(
        tutor.id,
        request.start_time,
        request.end_time,
        duration=request.duration
    )
    return {"status": "success", "data": SlotResponse.from_slot(slot)}


@router.put("/{slot_id}")
async def update_slot(
    slot_id: uuid.UUID,
    request: SlotUpdateRequest,
    current_user: User = Depends(require_roles(UserRole.TUTOR)),
    db: AsyncSession = Depends(get_db)
):
    """Move an unbooked slot"""
    slot_service = SlotService(db)
    slot = await slot_service.update_slot(
        slot_id,
        current_user.id,
        start_at=request.start_time,
        end_at=request.end_time,
        duration=request.duration
    )
    return {"status": "success", "data": SlotResponse.from_slot(slot)}


@router.delete("/{slot_id}")
async def delete_slot(
    slot_id: uuid.UUID,
    current_user: User = Depends(require_roles(UserRole.TUTOR)),
    db: AsyncSession = Depends(get_db)
):
    """Delete an unbooked slot"""
    slot_service = SlotService(db)
    await slot_service.delete_slot(slot_id, current_user.id)
    return {"status": "success", "message": "Slot deleted successfully"}
