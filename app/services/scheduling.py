"""Slot scheduling and conflict detection.

The module-level functions are pure: they work on already-fetched staff
schedules and appointments and never touch the database. Both the slot
calculator and the commit-time guard decide overlap through
:func:`has_conflict`, so the slots shown to a customer and the bookings the
back end accepts cannot disagree.

:class:`SchedulingEngineService` loads the records for one staff member and
day and delegates to these functions.
"""

from datetime import date as date_type, datetime, time, timedelta
from typing import Iterable, Optional, Protocol

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import InvalidInputError
from app.models.appointment import (
    NON_BLOCKING_STATUS_VALUES,
    Appointment,
    status_blocks_schedule,
)
from app.models.staff import Staff
from app.models.staff_schedule import StaffSchedule, WeekDay
from app.schemas.scheduling import (
    AvailableDaysQuery,
    ConflictCheckRequest,
    ConflictCheckResponse,
    SlotRequest,
    TimeWindow,
)

logger = structlog.get_logger(__name__)

SLOT_GRANULARITY_MINUTES = 15


class ScheduleRecord(Protocol):
    staff_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool


class AppointmentRecord(Protocol):
    id: int
    staff_id: int
    appointment_date: date_type
    start_time: time
    end_time: time
    status: str


def windows_overlap(first: TimeWindow, second: TimeWindow) -> bool:
    """Half-open interval overlap; windows that only touch do not overlap."""
    return first.start < second.end and second.start < first.end


def day_of_week(day: date_type) -> int:
    """Day of week in the stored schedule convention (0 = Sunday)."""
    return WeekDay.from_date(day).value


def find_schedule(
    schedules: Iterable[ScheduleRecord], staff_id: int, day: date_type
) -> Optional[ScheduleRecord]:
    weekday = day_of_week(day)
    for schedule in schedules:
        if schedule.staff_id == staff_id and schedule.day_of_week == weekday:
            return schedule
    return None


def find_conflicts(
    appointments: Iterable[AppointmentRecord],
    staff_id: int,
    day: date_type,
    start: time,
    end: time,
    exclude_appointment_id: Optional[int] = None,
) -> list[AppointmentRecord]:
    """Return the appointments whose window overlaps ``[start, end)``.

    Only appointments of ``staff_id`` on ``day`` that still hold their slot
    (not cancelled, not no-show) are considered. ``exclude_appointment_id``
    lets an appointment being rescheduled ignore itself.
    """
    if start >= end:
        raise InvalidInputError(
            f"Window start {start} must be before its end {end}"
        )

    candidate = TimeWindow(start=start, end=end)
    conflicts = []
    for appointment in appointments:
        if appointment.staff_id != staff_id or appointment.appointment_date != day:
            continue
        if not status_blocks_schedule(appointment.status):
            continue
        if (
            exclude_appointment_id is not None
            and appointment.id == exclude_appointment_id
        ):
            continue
        booked = TimeWindow(start=appointment.start_time, end=appointment.end_time)
        if windows_overlap(candidate, booked):
            conflicts.append(appointment)
    return conflicts


def has_conflict(
    appointments: Iterable[AppointmentRecord],
    staff_id: int,
    day: date_type,
    start: time,
    end: time,
    exclude_appointment_id: Optional[int] = None,
) -> bool:
    return bool(
        find_conflicts(
            appointments, staff_id, day, start, end, exclude_appointment_id
        )
    )


def compute_slots(
    schedules: Iterable[ScheduleRecord],
    appointments: Iterable[AppointmentRecord],
    staff_id: int,
    day: date_type,
    duration_minutes: int,
    granularity_minutes: int = SLOT_GRANULARITY_MINUTES,
) -> list[TimeWindow]:
    """Bookable windows of ``duration_minutes`` for a staff member on ``day``.

    Candidates start at the schedule's opening time and advance by
    ``granularity_minutes`` while the whole window still fits before closing
    time. A staff member without an available schedule for that day of week
    gets an empty list.
    """
    if duration_minutes <= 0:
        raise InvalidInputError(
            f"duration_minutes must be positive, got {duration_minutes}"
        )
    if granularity_minutes <= 0:
        raise InvalidInputError(
            f"granularity_minutes must be positive, got {granularity_minutes}"
        )

    schedule = find_schedule(schedules, staff_id, day)
    if schedule is None or not schedule.is_available:
        return []

    appointments = list(appointments)
    opens_at = datetime.combine(day, schedule.start_time)
    closes_at = datetime.combine(day, schedule.end_time)
    length = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=granularity_minutes)

    slots = []
    slot_start = opens_at
    while slot_start + length <= closes_at:
        slot_end = slot_start + length
        if not has_conflict(
            appointments, staff_id, day, slot_start.time(), slot_end.time()
        ):
            slots.append(TimeWindow(start=slot_start.time(), end=slot_end.time()))
        slot_start += step

    return slots


class SchedulingEngineService:
    """Read-side scheduling queries backed by the database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_available_slots(self, request: SlotRequest) -> list[TimeWindow]:
        """Ordered bookable windows for one staff member and day."""
        if not await self._is_bookable_staff(request.staff_id):
            logger.info("Staff member is not bookable", staff_id=request.staff_id)
            return []

        schedules = await self._get_schedules(request.staff_id, request.date)
        appointments = await self.get_day_appointments(
            request.staff_id, request.date
        )

        slots = compute_slots(
            schedules,
            appointments,
            request.staff_id,
            request.date,
            request.duration_minutes,
            settings.SLOT_GRANULARITY_MINUTES,
        )

        if not schedules:
            logger.info(
                "Staff member does not work on this day",
                staff_id=request.staff_id,
                date=request.date.isoformat(),
                weekday=WeekDay.from_date(request.date).name,
            )
        logger.info(
            "Computed available slots",
            staff_id=request.staff_id,
            date=request.date.isoformat(),
            duration_minutes=request.duration_minutes,
            booked=len(appointments),
            slots=len(slots),
        )
        return slots

    async def get_available_days(self, query: AvailableDaysQuery) -> list[date_type]:
        """Days within ``[start_date, end_date]`` with at least one open slot."""
        span_days = (query.end_date - query.start_date).days + 1
        if span_days > settings.MAX_AVAILABILITY_RANGE_DAYS:
            raise InvalidInputError(
                f"Date range of {span_days} days exceeds the maximum of "
                f"{settings.MAX_AVAILABILITY_RANGE_DAYS}"
            )

        if not await self._is_bookable_staff(query.staff_id):
            logger.info("Staff member is not bookable", staff_id=query.staff_id)
            return []

        schedules = await self._get_weekly_schedules(query.staff_id)
        appointments = await self._get_range_appointments(
            query.staff_id, query.start_date, query.end_date
        )

        available_days = []
        current_date = query.start_date
        while current_date <= query.end_date:
            slots = compute_slots(
                schedules,
                appointments,
                query.staff_id,
                current_date,
                query.duration_minutes,
                settings.SLOT_GRANULARITY_MINUTES,
            )
            if slots:
                available_days.append(current_date)
            current_date += timedelta(days=1)

        logger.info(
            "Computed available days",
            staff_id=query.staff_id,
            available=len(available_days),
            total=span_days,
        )
        return available_days

    async def check_conflict(
        self, request: ConflictCheckRequest
    ) -> ConflictCheckResponse:
        """Decide whether a proposed window collides with existing bookings."""
        appointments = await self.get_day_appointments(
            request.staff_id, request.appointment_date
        )
        conflicts = find_conflicts(
            appointments,
            request.staff_id,
            request.appointment_date,
            request.start_time,
            request.end_time,
            request.exclude_appointment_id,
        )

        if conflicts:
            logger.info(
                "Conflict detected",
                staff_id=request.staff_id,
                date=request.appointment_date.isoformat(),
                start=request.start_time.isoformat(),
                end=request.end_time.isoformat(),
                conflicting_ids=[a.id for a in conflicts],
            )

        return ConflictCheckResponse(
            has_conflict=bool(conflicts),
            conflicting_appointment_ids=[a.id for a in conflicts],
        )

    async def get_day_appointments(
        self, staff_id: int, day: date_type
    ) -> list[Appointment]:
        """Appointments of a staff member on a day that still hold their slot."""
        query = (
            select(Appointment)
            .where(
                and_(
                    Appointment.staff_id == staff_id,
                    Appointment.appointment_date == day,
                    Appointment.status.not_in(
                        list(NON_BLOCKING_STATUS_VALUES)
                    ),
                )
            )
            .order_by(Appointment.start_time)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _is_bookable_staff(self, staff_id: int) -> bool:
        result = await self.db.execute(
            select(Staff.is_active).where(Staff.id == staff_id)
        )
        return bool(result.scalar_one_or_none())

    async def _get_range_appointments(
        self, staff_id: int, start_date: date_type, end_date: date_type
    ) -> list[Appointment]:
        query = select(Appointment).where(
            and_(
                Appointment.staff_id == staff_id,
                Appointment.appointment_date >= start_date,
                Appointment.appointment_date <= end_date,
                Appointment.status.not_in(list(NON_BLOCKING_STATUS_VALUES)),
            )
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_schedules(
        self, staff_id: int, day: date_type
    ) -> list[StaffSchedule]:
        query = select(StaffSchedule).where(
            and_(
                StaffSchedule.staff_id == staff_id,
                StaffSchedule.day_of_week == day_of_week(day),
            )
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_weekly_schedules(self, staff_id: int) -> list[StaffSchedule]:
        result = await self.db.execute(
            select(StaffSchedule).where(StaffSchedule.staff_id == staff_id)
        )
        return list(result.scalars().all())
