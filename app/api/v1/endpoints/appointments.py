from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.core.exceptions import NotFoundError
from app.models.appointment import AppointmentStatus
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentRead,
    AppointmentReschedule,
    AppointmentStatusTransition,
)
from app.services.appointment import AppointmentService

router = APIRouter()


@router.post("/", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate, db: AsyncSession = Depends(get_db)
):
    """
    Book an appointment.

    The staff member's appointments for the day are re-read and checked for
    overlap inside the booking transaction. If the slot was taken since
    availability was displayed the response is 409 with
    ``refetch_availability`` set.
    """
    return await AppointmentService(db).create_appointment(appointment_data)


@router.get("/", response_model=List[AppointmentRead])
async def list_appointments(
    staff_id: Optional[int] = Query(None),
    appointment_date: Optional[date] = Query(None),
    appointment_status: Optional[List[AppointmentStatus]] = Query(
        None, alias="status"
    ),
    db: AsyncSession = Depends(get_db),
):
    filters = AppointmentFilters(
        staff_id=staff_id,
        appointment_date=appointment_date,
        status=appointment_status,
    )
    return await AppointmentService(db).get_appointments(filters)


@router.get("/{appointment_id}", response_model=AppointmentRead)
async def get_appointment(appointment_id: int, db: AsyncSession = Depends(get_db)):
    appointment = await AppointmentService(db).get_appointment(appointment_id)
    if not appointment:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
async def reschedule_appointment(
    appointment_id: int,
    reschedule_data: AppointmentReschedule,
    db: AsyncSession = Depends(get_db),
):
    """Move an appointment; it never conflicts with its own current window."""
    return await AppointmentService(db).reschedule_appointment(
        appointment_id, reschedule_data
    )


@router.post("/{appointment_id}/status", response_model=AppointmentRead)
async def transition_appointment_status(
    appointment_id: int,
    transition: AppointmentStatusTransition,
    db: AsyncSession = Depends(get_db),
):
    return await AppointmentService(db).transition_appointment_status(
        appointment_id, transition
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_appointment(
    appointment_id: int,
    cancellation: AppointmentCancel,
    db: AsyncSession = Depends(get_db),
):
    """Cancel an appointment, releasing its slot."""
    return await AppointmentService(db).cancel_appointment(
        appointment_id, cancellation
    )
