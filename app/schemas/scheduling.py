from datetime import date as date_type, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TimeWindow(BaseModel):
    """Half-open interval ``[start, end)`` of time of day."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time

    @model_validator(mode="after")
    def validate_order(self):
        if self.start >= self.end:
            raise ValueError("Window start must be before its end")
        return self

    def __str__(self):
        return f"[{self.start.strftime('%H:%M')},{self.end.strftime('%H:%M')})"


class SlotRequest(BaseModel):
    staff_id: int
    date: date_type
    duration_minutes: int = Field(..., gt=0)


class AvailableSlotsResponse(BaseModel):
    staff_id: int
    date: date_type
    duration_minutes: int
    slots: List[TimeWindow] = Field(default_factory=list)


class AvailableDaysQuery(BaseModel):
    staff_id: int
    start_date: date_type
    end_date: date_type
    duration_minutes: int = Field(..., gt=0)

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AvailableDaysResponse(BaseModel):
    staff_id: int
    duration_minutes: int
    days: List[date_type] = Field(default_factory=list)


class ConflictCheckRequest(BaseModel):
    staff_id: int
    appointment_date: date_type
    start_time: time
    end_time: time
    exclude_appointment_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicting_appointment_ids: List[int] = Field(default_factory=list)
