from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    bookings,
    public,
    scheduling,
)

api_router = APIRouter()

# Availability and conflict queries
api_router.include_router(scheduling.router, prefix="/scheduling", tags=["scheduling"])

# Appointment booking, rescheduling and lifecycle
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)

# Front desk handling of online booking requests
api_router.include_router(
    bookings.router, prefix="/booking-requests", tags=["booking-requests"]
)

# Public booking endpoints (customer-facing)
api_router.include_router(public.router, prefix="/public", tags=["public"])
