from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.api.v1.endpoints.scheduling import available_slots
from app.schemas.booking import OnlineBookingRequestCreate, OnlineBookingRequestRead
from app.schemas.scheduling import AvailableSlotsResponse
from app.services.booking import BookingRequestService

router = APIRouter()


@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def search_available_slots(
    staff_id: int = Query(..., description="Staff member to book"),
    slot_date: date = Query(..., alias="date", description="Calendar day"),
    duration_minutes: int = Query(..., gt=0, description="Service duration"),
    db: AsyncSession = Depends(get_db),
) -> AvailableSlotsResponse:
    """Open time windows shown on the public booking form."""
    return await available_slots(staff_id, slot_date, duration_minutes, db)


@router.post(
    "/booking-requests",
    response_model=OnlineBookingRequestRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit_booking_request(
    request_data: OnlineBookingRequestCreate, db: AsyncSession = Depends(get_db)
):
    """Submit a booking request; the salon confirms or rejects it later."""
    return await BookingRequestService(db).submit_request(request_data)
