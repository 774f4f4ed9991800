"""Test the appointment write path and its commit-time conflict guard."""

from datetime import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidInputError,
    InvalidStatusTransitionError,
    NotFoundError,
    SlotUnavailableError,
)
from app.models.appointment import Appointment, AppointmentStatus
from app.models.service import Service
from app.models.staff import Staff
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentReschedule,
    AppointmentStatusTransition,
)
from app.schemas.scheduling import SlotRequest, TimeWindow
from app.services.appointment import AppointmentService
from app.services.scheduling import SchedulingEngineService
from tests.conftest import MONDAY, TUESDAY


async def count_appointments(db: AsyncSession) -> int:
    result = await db.execute(select(Appointment))
    return len(result.scalars().all())


class TestCreateAppointment:
    async def test_books_free_slot(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        appointment = await service.create_appointment(
            AppointmentCreate(
                staff_id=salon_data["sarah_id"],
                appointment_date=MONDAY,
                start_time=time(9, 0),
                end_time=time(10, 0),
            )
        )

        assert appointment.id is not None
        assert appointment.status == AppointmentStatus.SCHEDULED.value
        assert appointment.end_time == time(10, 0)
        assert appointment.reschedule_count == 0

    async def test_end_time_derived_from_service(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        appointment = await service.create_appointment(
            AppointmentCreate(
                staff_id=salon_data["sarah_id"],
                appointment_date=MONDAY,
                start_time=time(9, 30),
                service_id=salon_data["manicure_id"],
            )
        )

        assert appointment.end_time == time(10, 30)
        assert appointment.service_id == salon_data["manicure_id"]

    async def test_end_time_derived_from_duration(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        appointment = await service.create_appointment(
            AppointmentCreate(
                staff_id=salon_data["sarah_id"],
                appointment_date=MONDAY,
                start_time=time(11, 15),
                duration_minutes=45,
            )
        )

        assert appointment.end_time == time(12, 0)

    async def test_overlapping_booking_is_rejected(
        self, db: AsyncSession, salon_data, book
    ):
        sarah_id = salon_data["sarah_id"]
        existing_id = await book(sarah_id, MONDAY, time(9, 0), time(9, 30))
        service = AppointmentService(db)

        with pytest.raises(SlotUnavailableError) as exc_info:
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=sarah_id,
                    appointment_date=MONDAY,
                    start_time=time(9, 15),
                    end_time=time(9, 45),
                )
            )

        assert exc_info.value.conflicting_appointment_ids == [existing_id]
        assert await count_appointments(db) == 1

    async def test_back_to_back_booking_is_accepted(
        self, db: AsyncSession, salon_data, book
    ):
        sarah_id = salon_data["sarah_id"]
        await book(sarah_id, MONDAY, time(9, 0), time(9, 30))
        service = AppointmentService(db)

        appointment = await service.create_appointment(
            AppointmentCreate(
                staff_id=sarah_id,
                appointment_date=MONDAY,
                start_time=time(9, 30),
                end_time=time(10, 0),
            )
        )

        assert appointment.start_time == time(9, 30)
        assert await count_appointments(db) == 2

    async def test_same_window_for_another_staff_member(
        self, db: AsyncSession, salon_data, book
    ):
        await book(salon_data["sarah_id"], MONDAY, time(10, 0), time(11, 0))
        service = AppointmentService(db)

        appointment = await service.create_appointment(
            AppointmentCreate(
                staff_id=salon_data["maria_id"],
                appointment_date=MONDAY,
                start_time=time(10, 0),
                end_time=time(11, 0),
            )
        )

        assert appointment.staff_id == salon_data["maria_id"]

    async def test_slot_shown_then_taken_is_rejected(
        self, db: AsyncSession, salon_data, book
    ):
        sarah_id = salon_data["sarah_id"]
        engine = SchedulingEngineService(db)
        request = SlotRequest(staff_id=sarah_id, date=MONDAY, duration_minutes=60)
        displayed = await engine.get_available_slots(request)
        chosen = TimeWindow(start=time(10, 0), end=time(11, 0))
        assert chosen in displayed

        # Someone else books an overlapping window after the page was rendered
        await book(sarah_id, MONDAY, time(10, 30), time(11, 30))

        with pytest.raises(SlotUnavailableError):
            await AppointmentService(db).create_appointment(
                AppointmentCreate(
                    staff_id=sarah_id,
                    appointment_date=MONDAY,
                    start_time=chosen.start,
                    end_time=chosen.end,
                )
            )

        refreshed = await engine.get_available_slots(request)
        assert chosen not in refreshed
        assert TimeWindow(start=time(9, 0), end=time(10, 0)) in refreshed

    async def test_cancelled_slot_can_be_rebooked(self, db: AsyncSession, salon_data):
        sarah_id = salon_data["sarah_id"]
        service = AppointmentService(db)
        data = AppointmentCreate(
            staff_id=sarah_id,
            appointment_date=MONDAY,
            start_time=time(10, 0),
            end_time=time(11, 0),
        )
        first = await service.create_appointment(data)
        await service.cancel_appointment(first.id, AppointmentCancel(reason="Sick"))

        second = await service.create_appointment(data)

        assert second.id != first.id
        assert second.status == AppointmentStatus.SCHEDULED.value

    async def test_unknown_staff_is_not_found(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=9999,
                    appointment_date=MONDAY,
                    start_time=time(9, 0),
                    end_time=time(10, 0),
                )
            )

    async def test_unknown_service_is_not_found(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=salon_data["sarah_id"],
                    appointment_date=MONDAY,
                    start_time=time(9, 0),
                    service_id=9999,
                )
            )

    async def test_inactive_staff_is_not_bookable(self, db: AsyncSession, salon_data):
        staff = await db.get(Staff, salon_data["sarah_id"])
        staff.is_active = False
        await db.commit()
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=salon_data["sarah_id"],
                    appointment_date=MONDAY,
                    start_time=time(9, 0),
                    end_time=time(10, 0),
                )
            )
        assert await count_appointments(db) == 0

    async def test_inactive_service_is_not_bookable(
        self, db: AsyncSession, salon_data
    ):
        nail_art = await db.get(Service, salon_data["nail_art_id"])
        nail_art.is_active = False
        await db.commit()
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=salon_data["sarah_id"],
                    appointment_date=MONDAY,
                    start_time=time(9, 0),
                    service_id=salon_data["nail_art_id"],
                )
            )

    async def test_booking_past_midnight_is_rejected(
        self, db: AsyncSession, salon_data
    ):
        service = AppointmentService(db)

        with pytest.raises(InvalidInputError):
            await service.create_appointment(
                AppointmentCreate(
                    staff_id=salon_data["sarah_id"],
                    appointment_date=MONDAY,
                    start_time=time(23, 30),
                    duration_minutes=60,
                )
            )

    def test_inverted_window_fails_validation(self):
        with pytest.raises(ValueError):
            AppointmentCreate(
                staff_id=1,
                appointment_date=MONDAY,
                start_time=time(10, 0),
                end_time=time(9, 0),
            )

    def test_window_length_is_required(self):
        with pytest.raises(ValueError):
            AppointmentCreate(staff_id=1, appointment_date=MONDAY, start_time=time(10, 0))


class TestRescheduleAppointment:
    async def test_shift_overlapping_own_window(
        self, db: AsyncSession, salon_data, book
    ):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(10, 0), time(10, 30)
        )
        service = AppointmentService(db)

        appointment = await service.reschedule_appointment(
            appointment_id,
            AppointmentReschedule(
                appointment_date=MONDAY,
                start_time=time(10, 15),
                end_time=time(10, 45),
            ),
        )

        assert appointment.start_time == time(10, 15)
        assert appointment.end_time == time(10, 45)
        assert appointment.reschedule_count == 1

    async def test_keeps_length_when_end_not_given(
        self, db: AsyncSession, salon_data, book
    ):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(10, 0), time(11, 0)
        )
        service = AppointmentService(db)

        appointment = await service.reschedule_appointment(
            appointment_id,
            AppointmentReschedule(
                appointment_date=TUESDAY,
                start_time=time(9, 0),
                reason="Customer asked for Tuesday",
            ),
        )

        assert appointment.appointment_date == TUESDAY
        assert appointment.end_time == time(10, 0)
        assert "Rescheduled: Customer asked for Tuesday" in appointment.notes

    async def test_move_onto_another_booking_is_rejected(
        self, db: AsyncSession, salon_data, book
    ):
        sarah_id = salon_data["sarah_id"]
        appointment_id = await book(sarah_id, MONDAY, time(9, 0), time(9, 30))
        other_id = await book(sarah_id, MONDAY, time(11, 0), time(12, 0))
        service = AppointmentService(db)

        with pytest.raises(SlotUnavailableError) as exc_info:
            await service.reschedule_appointment(
                appointment_id,
                AppointmentReschedule(
                    appointment_date=MONDAY,
                    start_time=time(11, 30),
                    end_time=time(12, 0),
                ),
            )

        assert exc_info.value.conflicting_appointment_ids == [other_id]
        unchanged = await db.get(Appointment, appointment_id, populate_existing=True)
        assert unchanged.start_time == time(9, 0)
        assert unchanged.reschedule_count == 0

    async def test_move_to_another_staff_member(
        self, db: AsyncSession, salon_data, book
    ):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(10, 0), time(11, 0)
        )
        service = AppointmentService(db)

        appointment = await service.reschedule_appointment(
            appointment_id,
            AppointmentReschedule(
                appointment_date=MONDAY,
                start_time=time(12, 0),
                staff_id=salon_data["maria_id"],
            ),
        )

        assert appointment.staff_id == salon_data["maria_id"]
        assert appointment.end_time == time(13, 0)

    async def test_completed_appointment_cannot_move(
        self, db: AsyncSession, salon_data, book
    ):
        appointment_id = await book(
            salon_data["sarah_id"],
            MONDAY,
            time(9, 0),
            time(10, 0),
            AppointmentStatus.COMPLETED,
        )
        service = AppointmentService(db)

        with pytest.raises(InvalidStatusTransitionError):
            await service.reschedule_appointment(
                appointment_id,
                AppointmentReschedule(appointment_date=TUESDAY, start_time=time(9, 0)),
            )

    async def test_unknown_appointment_is_not_found(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.reschedule_appointment(
                9999,
                AppointmentReschedule(appointment_date=MONDAY, start_time=time(9, 0)),
            )


class TestStatusTransitions:
    async def test_confirm_then_start(self, db: AsyncSession, salon_data, book):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(9, 0), time(10, 0)
        )
        service = AppointmentService(db)

        confirmed = await service.transition_appointment_status(
            appointment_id,
            AppointmentStatusTransition(new_status=AppointmentStatus.CONFIRMED),
        )
        assert confirmed.status == AppointmentStatus.CONFIRMED.value

        started = await service.transition_appointment_status(
            appointment_id,
            AppointmentStatusTransition(new_status=AppointmentStatus.IN_PROGRESS),
        )
        assert started.status == AppointmentStatus.IN_PROGRESS.value
        assert started.previous_status == AppointmentStatus.CONFIRMED.value

    async def test_invalid_transition_is_rejected(
        self, db: AsyncSession, salon_data, book
    ):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(9, 0), time(10, 0)
        )
        service = AppointmentService(db)

        with pytest.raises(InvalidStatusTransitionError):
            await service.transition_appointment_status(
                appointment_id,
                AppointmentStatusTransition(new_status=AppointmentStatus.COMPLETED),
            )

    async def test_cancel_records_reason(self, db: AsyncSession, salon_data, book):
        appointment_id = await book(
            salon_data["sarah_id"], MONDAY, time(9, 0), time(10, 0)
        )
        service = AppointmentService(db)

        cancelled = await service.cancel_appointment(
            appointment_id, AppointmentCancel(reason="Double booked elsewhere")
        )

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Double booked elsewhere"
        assert cancelled.cancelled_at is not None

    async def test_unknown_appointment_is_not_found(self, db: AsyncSession, salon_data):
        service = AppointmentService(db)

        with pytest.raises(NotFoundError):
            await service.cancel_appointment(9999, AppointmentCancel())


class TestGetAppointments:
    async def test_filters_by_staff_date_and_status(
        self, db: AsyncSession, salon_data, book
    ):
        sarah_id = salon_data["sarah_id"]
        first = await book(sarah_id, MONDAY, time(9, 0), time(10, 0))
        await book(sarah_id, MONDAY, time(10, 0), time(11, 0), AppointmentStatus.CANCELLED)
        await book(sarah_id, TUESDAY, time(9, 0), time(10, 0))
        await book(salon_data["maria_id"], MONDAY, time(10, 0), time(11, 0))
        service = AppointmentService(db)

        appointments = await service.get_appointments(
            AppointmentFilters(
                staff_id=sarah_id,
                appointment_date=MONDAY,
                status=[AppointmentStatus.SCHEDULED],
            )
        )

        assert [a.id for a in appointments] == [first]

    async def test_ordered_by_date_and_start(self, db: AsyncSession, salon_data, book):
        sarah_id = salon_data["sarah_id"]
        late = await book(sarah_id, TUESDAY, time(9, 0), time(10, 0))
        afternoon = await book(sarah_id, MONDAY, time(11, 0), time(12, 0))
        morning = await book(sarah_id, MONDAY, time(9, 0), time(10, 0))
        service = AppointmentService(db)

        appointments = await service.get_appointments(AppointmentFilters())

        assert [a.id for a in appointments] == [morning, afternoon, late]


class TestExclusionConstraintFallback:
    def _service_with_failing_flush(self, message: str) -> AppointmentService:
        db = MagicMock()
        db.flush = AsyncMock(
            side_effect=IntegrityError("INSERT INTO appointments", {}, Exception(message))
        )
        db.rollback = AsyncMock()
        return AppointmentService(db)

    async def test_constraint_violation_becomes_slot_unavailable(self):
        service = self._service_with_failing_flush(
            'conflicting key value violates exclusion constraint '
            '"excl_appointments_staff_overlap"'
        )

        with pytest.raises(SlotUnavailableError):
            await service._flush_booking()

        service.db.rollback.assert_awaited_once()

    async def test_other_integrity_errors_propagate(self):
        service = self._service_with_failing_flush(
            'insert or update on table "appointments" violates foreign key constraint'
        )

        with pytest.raises(IntegrityError):
            await service._flush_booking()

        service.db.rollback.assert_awaited_once()
