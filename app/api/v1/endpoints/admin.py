from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
import math
import uuid

from app.core.database import get_db
from app.core.auth import require_roles
from app.models.user import User, UserRole
from app.models.booking import BookingStatus
from app.schemas.booking import (
    BookingStatusUpdateRequest,
    BookingResponse,
    BookingListResponse,
    PaginationInfo,
    PlatformStatsResponse,
)
from app.services.admin_service import AdminService
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService, get_notification_service

router = APIRouter()

admin_only = require_roles(UserRole.ADMIN)


@router.get("/bookings")
async def get_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    tutor_id: Optional[uuid.UUID] = Query(None),
    student_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """All bookings with filters"""
    admin_service = AdminService(db)
    bookings, total = await admin_service.list_all_bookings(
        status=status_filter,
        tutor_id=tutor_id,
        student_id=student_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit
    )
    return {
        "status": "success",
        "data": BookingListResponse(
            bookings=[BookingResponse.from_booking(b) for b in bookings],
            pagination=PaginationInfo(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if total else 0
            )
        )
    }


@router.put("/bookings/{booking_id}/status")
async def update_booking_status(
    booking_id: uuid.UUID,
    request: BookingStatusUpdateRequest,
    current_user: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service)
):
    booking_service = BookingService(db, notifications)
    booking = await booking_service.update_booking_status(booking_id, request.status, request.reason)
    return {
        "status": "success",
        "message": f"Booking status updated to {booking.status.value}",
        "data": BookingResponse.from_booking(booking)
    }


@router.get("/stats")
async def get_platform_stats(
    current_user: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Platform statistics"""
    admin_service = AdminService(db)
    stats = await admin_service.get_statistics()
    return {"status": "success", "data": PlatformStatsResponse(**stats)}
