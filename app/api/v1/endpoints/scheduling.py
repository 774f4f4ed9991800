from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.schemas.scheduling import (
    AvailableDaysQuery,
    AvailableDaysResponse,
    AvailableSlotsResponse,
    ConflictCheckRequest,
    ConflictCheckResponse,
    SlotRequest,
)
from app.services.scheduling import SchedulingEngineService

router = APIRouter()


async def available_slots(
    staff_id: int, slot_date: date, duration_minutes: int, db: AsyncSession
) -> AvailableSlotsResponse:
    request = SlotRequest(
        staff_id=staff_id, date=slot_date, duration_minutes=duration_minutes
    )
    slots = await SchedulingEngineService(db).get_available_slots(request)
    return AvailableSlotsResponse(
        staff_id=staff_id,
        date=slot_date,
        duration_minutes=duration_minutes,
        slots=slots,
    )


@router.get("/staff/{staff_id}/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    staff_id: int,
    slot_date: date = Query(..., alias="date", description="Calendar day"),
    duration_minutes: int = Query(..., gt=0, description="Service duration"),
    db: AsyncSession = Depends(get_db),
) -> AvailableSlotsResponse:
    """
    Bookable time windows for a staff member on one day.

    Windows advance in 15 minute steps from the staff member's opening time
    and never run past closing time. Windows overlapping any appointment that
    is not cancelled or marked no-show are left out. An empty list means
    the staff member is off or fully booked.
    """
    return await available_slots(staff_id, slot_date, duration_minutes, db)


@router.get("/staff/{staff_id}/available-days", response_model=AvailableDaysResponse)
async def get_available_days(
    staff_id: int,
    start_date: date = Query(..., description="First day of the range"),
    end_date: date = Query(..., description="Last day of the range (inclusive)"),
    duration_minutes: int = Query(..., gt=0, description="Service duration"),
    db: AsyncSession = Depends(get_db),
) -> AvailableDaysResponse:
    """Days in the range on which at least one window is bookable."""
    query = AvailableDaysQuery(
        staff_id=staff_id,
        start_date=start_date,
        end_date=end_date,
        duration_minutes=duration_minutes,
    )
    days = await SchedulingEngineService(db).get_available_days(query)
    return AvailableDaysResponse(
        staff_id=staff_id, duration_minutes=duration_minutes, days=days
    )


@router.post("/conflicts/check", response_model=ConflictCheckResponse)
async def check_conflict(
    request: ConflictCheckRequest, db: AsyncSession = Depends(get_db)
) -> ConflictCheckResponse:
    """
    Check whether a window overlaps an existing appointment of the staff
    member. Pass ``exclude_appointment_id`` when re-checking an appointment
    that is being rescheduled.
    """
    return await SchedulingEngineService(db).check_conflict(request)
