from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Import enums from the model to avoid duplication
from app.models.appointment import AppointmentStatus


def _check_window(start_time: time, end_time: Optional[time]):
    if end_time is not None and start_time >= end_time:
        raise ValueError("start_time must be before end_time")


class AppointmentCreate(BaseModel):
    """New booking.

    The end of the window is taken from ``end_time`` when given, otherwise
    from ``duration_minutes``, otherwise from the service's duration.
    """

    staff_id: int
    appointment_date: date
    start_time: time
    end_time: Optional[time] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    service_id: Optional[int] = None
    customer_id: Optional[int] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        if (
            self.end_time is None
            and self.duration_minutes is None
            and self.service_id is None
        ):
            raise ValueError(
                "One of end_time, duration_minutes or service_id is required"
            )
        if self.status not in (
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
        ):
            raise ValueError("New appointments must be scheduled or confirmed")
        return self


class AppointmentReschedule(BaseModel):
    appointment_date: date
    start_time: time
    end_time: Optional[time] = None
    staff_id: Optional[int] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        return self


class AppointmentStatusTransition(BaseModel):
    new_status: AppointmentStatus
    notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentFilters(BaseModel):
    staff_id: Optional[int] = None
    appointment_date: Optional[date] = None
    status: Optional[List[AppointmentStatus]] = None


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    staff_id: int
    service_id: Optional[int] = None
    customer_id: Optional[int] = None
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    previous_status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    reschedule_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
