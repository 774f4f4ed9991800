from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.online_booking import BookingRequestStatus


class OnlineBookingRequestCreate(BaseModel):
    """Public booking form submission."""

    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: EmailStr
    customer_phone: str = Field(..., min_length=5, max_length=20)
    service_id: Optional[int] = None
    staff_id: Optional[int] = None
    preferred_date: date
    preferred_time: time
    notes: Optional[str] = Field(None, max_length=1000)


class BookingConfirmation(BaseModel):
    """Front desk decision; any field left unset keeps the customer's choice."""

    staff_id: Optional[int] = None
    appointment_date: Optional[date] = None
    start_time: Optional[time] = None
    notes: Optional[str] = None


class OnlineBookingRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    confirmation_token: UUID
    customer_name: str
    customer_email: str
    customer_phone: str
    service_id: Optional[int] = None
    staff_id: Optional[int] = None
    preferred_date: date
    preferred_time: time
    notes: Optional[str] = None
    status: BookingRequestStatus
    confirmed_at: Optional[datetime] = None
    appointment_id: Optional[int] = None
    created_at: Optional[datetime] = None
