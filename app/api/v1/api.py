from fastapi import APIRouter

from app.api.v1.endpoints import admin, booking, health, slots

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(slots.router, prefix="/slots", tags=["slots"])
api_router.include_router(booking.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
