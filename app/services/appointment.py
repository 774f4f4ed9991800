from datetime import date, datetime, time, timedelta
from typing import Optional

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidInputError,
    InvalidStatusTransitionError,
    NotFoundError,
    SlotUnavailableError,
)
from app.models.appointment import (
    EXCLUSION_CONSTRAINT_NAME,
    Appointment,
    AppointmentStatus,
)
from app.models.service import Service
from app.models.staff import Staff
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentReschedule,
    AppointmentStatusTransition,
)
from app.services.scheduling import SchedulingEngineService, find_conflicts

logger = structlog.get_logger(__name__)

RESCHEDULABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class AppointmentService:
    """Appointment write path with commit-time conflict prevention.

    Every create or reschedule locks the staff row, re-reads that staff
    member's appointments for the day and runs the conflict guard before
    flushing, so two concurrent bookings of the same slot cannot both pass.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.scheduling_engine = SchedulingEngineService(db)

    async def create_appointment(
        self, appointment_data: AppointmentCreate, commit: bool = True
    ) -> Appointment:
        """Book a new appointment or raise :class:`SlotUnavailableError`."""
        try:
            end_time = await self._resolve_end_time(
                appointment_data.appointment_date,
                appointment_data.start_time,
                appointment_data.end_time,
                appointment_data.duration_minutes,
                appointment_data.service_id,
            )

            await self._lock_staff(appointment_data.staff_id)
            await self._ensure_slot_free(
                appointment_data.staff_id,
                appointment_data.appointment_date,
                appointment_data.start_time,
                end_time,
            )

            appointment = Appointment(
                staff_id=appointment_data.staff_id,
                service_id=appointment_data.service_id,
                customer_id=appointment_data.customer_id,
                appointment_date=appointment_data.appointment_date,
                start_time=appointment_data.start_time,
                end_time=end_time,
                status=appointment_data.status.value,
                notes=appointment_data.notes,
            )
            self.db.add(appointment)
            await self._flush_booking()
        except (InvalidInputError, NotFoundError, SlotUnavailableError):
            await self.db.rollback()
            raise

        if commit:
            await self.db.commit()
        await self.db.refresh(appointment)

        logger.info(
            "Appointment booked",
            appointment_id=appointment.id,
            staff_id=appointment.staff_id,
            date=appointment.appointment_date.isoformat(),
            start=appointment.start_time.isoformat(),
            end=appointment.end_time.isoformat(),
        )
        return appointment

    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        return await self.db.get(Appointment, appointment_id)

    async def get_appointments(self, filters: AppointmentFilters) -> list[Appointment]:
        query = select(Appointment)

        conditions = []
        if filters.staff_id is not None:
            conditions.append(Appointment.staff_id == filters.staff_id)
        if filters.appointment_date is not None:
            conditions.append(Appointment.appointment_date == filters.appointment_date)
        if filters.status:
            conditions.append(Appointment.status.in_([s.value for s in filters.status]))
        if conditions:
            query = query.where(and_(*conditions))

        query = query.order_by(
            Appointment.appointment_date, Appointment.start_time, Appointment.id
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def reschedule_appointment(
        self, appointment_id: int, reschedule_data: AppointmentReschedule
    ) -> Appointment:
        """Move an appointment, ignoring its own current window in the check."""
        try:
            appointment = await self._get_appointment_for_update(appointment_id)

            if appointment.status_enum not in RESCHEDULABLE_STATUSES:
                raise InvalidStatusTransitionError(
                    f"Cannot reschedule appointment in status {appointment.status}"
                )

            staff_id = reschedule_data.staff_id or appointment.staff_id
            end_time = reschedule_data.end_time
            if end_time is None:
                # Keep the current length of the appointment
                current_length = datetime.combine(
                    appointment.appointment_date, appointment.end_time
                ) - datetime.combine(
                    appointment.appointment_date, appointment.start_time
                )
                end_time = self._add_minutes(
                    reschedule_data.appointment_date,
                    reschedule_data.start_time,
                    int(current_length.total_seconds() // 60),
                )

            await self._lock_staff(staff_id)
            await self._ensure_slot_free(
                staff_id,
                reschedule_data.appointment_date,
                reschedule_data.start_time,
                end_time,
                exclude_appointment_id=appointment_id,
            )

            appointment.staff_id = staff_id
            appointment.appointment_date = reschedule_data.appointment_date
            appointment.start_time = reschedule_data.start_time
            appointment.end_time = end_time
            appointment.reschedule_count = (appointment.reschedule_count or 0) + 1
            if reschedule_data.reason:
                note = f"Rescheduled: {reschedule_data.reason}"
                appointment.notes = (
                    f"{appointment.notes}\n{note}" if appointment.notes else note
                )

            await self._flush_booking()
        except (
            InvalidInputError,
            InvalidStatusTransitionError,
            NotFoundError,
            SlotUnavailableError,
        ):
            await self.db.rollback()
            raise

        await self.db.commit()
        await self.db.refresh(appointment)

        logger.info(
            "Appointment rescheduled",
            appointment_id=appointment_id,
            staff_id=staff_id,
            date=reschedule_data.appointment_date.isoformat(),
            start=reschedule_data.start_time.isoformat(),
            end=end_time.isoformat(),
        )
        return appointment

    async def transition_appointment_status(
        self, appointment_id: int, transition: AppointmentStatusTransition
    ) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)

        current_status = appointment.status
        if not appointment.transition_to(transition.new_status, transition.notes):
            raise InvalidStatusTransitionError(
                f"Cannot transition from {current_status} to "
                f"{transition.new_status.value}"
            )

        await self.db.commit()
        await self.db.refresh(appointment)

        logger.info(
            "Appointment status changed",
            appointment_id=appointment_id,
            from_status=current_status,
            to_status=transition.new_status.value,
        )
        return appointment

    async def cancel_appointment(
        self, appointment_id: int, cancellation: AppointmentCancel
    ) -> Appointment:
        return await self.transition_appointment_status(
            appointment_id,
            AppointmentStatusTransition(
                new_status=AppointmentStatus.CANCELLED, notes=cancellation.reason
            ),
        )

    async def _resolve_end_time(
        self,
        appointment_date: date,
        start_time: time,
        end_time: Optional[time],
        duration_minutes: Optional[int],
        service_id: Optional[int],
    ) -> time:
        service = None
        if service_id is not None:
            service = await self.db.get(Service, service_id)
            if not service or not service.is_active:
                raise NotFoundError("Service", service_id)

        if end_time is not None:
            return end_time
        if duration_minutes is None:
            duration_minutes = service.duration_minutes
        return self._add_minutes(appointment_date, start_time, duration_minutes)

    @staticmethod
    def _add_minutes(day: date, start_time: time, minutes: int) -> time:
        if minutes <= 0:
            raise InvalidInputError(f"Duration must be positive, got {minutes}")
        end_dt = datetime.combine(day, start_time) + timedelta(minutes=minutes)
        if end_dt.date() != day:
            raise InvalidInputError("Appointment cannot extend past midnight")
        return end_dt.time()

    async def _lock_staff(self, staff_id: int) -> Staff:
        """Serialize bookings per staff member for the rest of the transaction.

        Inactive staff members cannot take new bookings and are reported as
        not found.
        """
        result = await self.db.execute(
            select(Staff)
            .where(Staff.id == staff_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        staff = result.scalar_one_or_none()
        if not staff or not staff.is_active:
            raise NotFoundError("Staff", staff_id)
        return staff

    async def _get_appointment_for_update(self, appointment_id: int) -> Appointment:
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .with_for_update()
        )
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    async def _ensure_slot_free(
        self,
        staff_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        # Read the current state, not anything cached at display time
        appointments = await self.scheduling_engine.get_day_appointments(
            staff_id, appointment_date
        )
        logger.debug(
            "Checking slot against current bookings",
            staff_id=staff_id,
            date=appointment_date.isoformat(),
            booked=len(appointments),
        )
        conflicts = find_conflicts(
            appointments,
            staff_id,
            appointment_date,
            start_time,
            end_time,
            exclude_appointment_id,
        )
        if conflicts:
            conflicting_ids = [a.id for a in conflicts]
            logger.warning(
                "Booking rejected, slot no longer available",
                staff_id=staff_id,
                date=appointment_date.isoformat(),
                start=start_time.isoformat(),
                end=end_time.isoformat(),
                conflicting_ids=conflicting_ids,
            )
            raise SlotUnavailableError(conflicting_appointment_ids=conflicting_ids)

    async def _flush_booking(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            if EXCLUSION_CONSTRAINT_NAME in str(e.orig):
                logger.warning("Booking rejected by exclusion constraint")
                raise SlotUnavailableError() from e
            logger.error("Failed to save appointment", error=str(e))
            raise
