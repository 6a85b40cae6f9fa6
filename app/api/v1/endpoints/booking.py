from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import math
import uuid

from app.core.database import get_db
from app.core.auth import get_current_user, require_roles
from app.core.exceptions import ForbiddenError
from app.models.user import User, UserRole
from app.models.booking import BookingStatus
from app.schemas.booking import (
    BookingCreateRequest,
    BookingCancelRequest,
    BookingRateRequest,
    BookingResponse,
    BookingListResponse,
    PaginationInfo,
)
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService, get_notification_service

router = APIRouter()


@router.get("")
async def get_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Bookings visible to the current user"""
    booking_service = BookingService(db)
    bookings, total = await booking_service.list_bookings(current_user, status_filter, page, limit)

    return {
        "status": "success",
        "data": BookingListResponse(
            bookings=[BookingResponse.from_booking(b, current_user.timezone) for b in bookings],
            pagination=PaginationInfo(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if total else 0
            )
        )
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateRequest,
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service)
):
    """Book a slot for the current student"""
    booking_service = BookingService(db, notifications)
    booking = await booking_service.create_booking(
        current_user.id,
        request.slot_id,
        request.subject,
        request.notes
    )
    return {
        "status": "success",
        "data": BookingResponse.from_booking(booking, current_user.timezone)
    }


@router.put("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: uuid.UUID,
    request: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service)
):
    """Cancel a booking as its student or tutor"""
    booking_service = BookingService(db, notifications)
    booking = await booking_service.cancel_booking(
        current_user.id,
        booking_id,
        request.reason if request else None
    )
    return {
        "status": "success",
        "message": "Booking cancelled successfully",
        "data": BookingResponse.from_booking(booking, current_user.timezone)
    }


@router.post("/{booking_id}/rate")
async def rate_booking(
    booking_id: uuid.UUID,
    request: BookingRateRequest,
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    db: AsyncSession = Depends(get_db)
):
    """Rate a completed booking"""
    booking_service = BookingService(db)
    booking = await booking_service.rate_booking(
        current_user.id,
        booking_id,
        request.rating,
        request.review
    )
    return {
        "status": "success",
        "message": "Rating submitted successfully",
        "data": BookingResponse.from_booking(booking, current_user.timezone)
    }


@router.get("/{booking_id}")
async def get_booking(
    booking_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """A single booking, visible to its student, its tutor and admins"""
    booking_service = BookingService(db)
    booking = await booking_service.get_booking(booking_id)

    if current_user.role != UserRole.ADMIN and current_user.id not in (booking.student_id, booking.tutor.user_id):
        raise ForbiddenError("Not authorized to view this booking")

    return {
        "status": "success",
        "data": BookingResponse.from_booking(booking, current_user.timezone)
    }
