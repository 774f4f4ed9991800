from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.core.exceptions import NotFoundError
from app.models.online_booking import BookingRequestStatus
from app.schemas.booking import BookingConfirmation, OnlineBookingRequestRead
from app.services.booking import BookingRequestService

router = APIRouter()


@router.get("/", response_model=List[OnlineBookingRequestRead])
async def list_booking_requests(
    request_status: Optional[BookingRequestStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    return await BookingRequestService(db).list_requests(request_status)


@router.get("/{request_id}", response_model=OnlineBookingRequestRead)
async def get_booking_request(request_id: int, db: AsyncSession = Depends(get_db)):
    booking_request = await BookingRequestService(db).get_request(request_id)
    if not booking_request:
        raise NotFoundError("Booking request", request_id)
    return booking_request


@router.post("/{request_id}/confirm", response_model=OnlineBookingRequestRead)
async def confirm_booking_request(
    request_id: int,
    confirmation: BookingConfirmation,
    db: AsyncSession = Depends(get_db),
):
    """
    Confirm a pending request into an appointment.

    Staff, date and start time default to the customer's preferences. The
    appointment length is the requested service's duration. Responds 409
    when the slot is no longer free; the request then stays pending.
    """
    return await BookingRequestService(db).confirm_request(request_id, confirmation)


@router.post("/{request_id}/reject", response_model=OnlineBookingRequestRead)
async def reject_booking_request(request_id: int, db: AsyncSession = Depends(get_db)):
    return await BookingRequestService(db).reject_request(request_id)


@router.post("/{request_id}/cancel", response_model=OnlineBookingRequestRead)
async def cancel_booking_request(request_id: int, db: AsyncSession = Depends(get_db)):
    return await BookingRequestService(db).cancel_request(request_id)
