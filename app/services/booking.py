from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidInputError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from app.models.appointment import AppointmentStatus
from app.models.online_booking import BookingRequestStatus, OnlineBookingRequest
from app.models.service import Service
from app.models.staff import Staff
from app.schemas.appointment import AppointmentCreate
from app.schemas.booking import BookingConfirmation, OnlineBookingRequestCreate
from app.services.appointment import AppointmentService

logger = structlog.get_logger(__name__)


class BookingRequestService:
    """Online booking requests: public submission, front desk decision."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.appointment_service = AppointmentService(db)

    async def submit_request(
        self, request_data: OnlineBookingRequestCreate
    ) -> OnlineBookingRequest:
        if request_data.service_id is not None:
            service = await self.db.get(Service, request_data.service_id)
            if not service or not service.is_active:
                raise NotFoundError("Service", request_data.service_id)
        if request_data.staff_id is not None:
            staff = await self.db.get(Staff, request_data.staff_id)
            if not staff or not staff.is_active:
                raise NotFoundError("Staff", request_data.staff_id)

        booking_request = OnlineBookingRequest(
            **request_data.model_dump(),
            status=BookingRequestStatus.PENDING.value,
        )
        self.db.add(booking_request)
        await self.db.commit()
        await self.db.refresh(booking_request)

        logger.info(
            "Online booking request received",
            booking_request_id=booking_request.id,
            preferred_date=booking_request.preferred_date.isoformat(),
            staff_id=booking_request.staff_id,
        )
        return booking_request

    async def get_request(self, request_id: int) -> Optional[OnlineBookingRequest]:
        return await self.db.get(OnlineBookingRequest, request_id)

    async def list_requests(
        self, status: Optional[BookingRequestStatus] = None
    ) -> list[OnlineBookingRequest]:
        query = select(OnlineBookingRequest)
        if status is not None:
            query = query.where(OnlineBookingRequest.status == status.value)
        query = query.order_by(
            OnlineBookingRequest.created_at.desc(), OnlineBookingRequest.id.desc()
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def confirm_request(
        self, request_id: int, confirmation: BookingConfirmation
    ) -> OnlineBookingRequest:
        """Turn a pending request into a confirmed appointment.

        The appointment goes through the same commit-time conflict check as
        any other booking; if the slot is gone the request stays pending.
        """
        booking_request = await self._get_pending(request_id)

        staff_id = confirmation.staff_id or booking_request.staff_id
        if staff_id is None:
            await self.db.rollback()
            raise InvalidInputError(
                "A staff member must be assigned before confirming"
            )

        duration_minutes = settings.DEFAULT_SERVICE_DURATION_MINUTES
        if booking_request.service_id is not None:
            service = await self.db.get(Service, booking_request.service_id)
            if service:
                duration_minutes = service.duration_minutes

        contact = (
            f"Online booking: {booking_request.customer_name} "
            f"<{booking_request.customer_email}> {booking_request.customer_phone}"
        )
        notes = "\n".join(
            part
            for part in (contact, booking_request.notes, confirmation.notes)
            if part
        )

        appointment = await self.appointment_service.create_appointment(
            AppointmentCreate(
                staff_id=staff_id,
                appointment_date=(
                    confirmation.appointment_date or booking_request.preferred_date
                ),
                start_time=confirmation.start_time or booking_request.preferred_time,
                duration_minutes=duration_minutes,
                service_id=booking_request.service_id,
                status=AppointmentStatus.CONFIRMED,
                notes=notes,
            ),
            commit=False,
        )

        booking_request.status = BookingRequestStatus.CONFIRMED.value
        booking_request.confirmed_at = datetime.now(timezone.utc)
        booking_request.appointment_id = appointment.id
        booking_request.staff_id = staff_id

        await self.db.commit()
        await self.db.refresh(booking_request)

        logger.info(
            "Online booking request confirmed",
            booking_request_id=request_id,
            appointment_id=appointment.id,
        )
        return booking_request

    async def reject_request(self, request_id: int) -> OnlineBookingRequest:
        return await self._close_request(request_id, BookingRequestStatus.REJECTED)

    async def cancel_request(self, request_id: int) -> OnlineBookingRequest:
        return await self._close_request(request_id, BookingRequestStatus.CANCELLED)

    async def _close_request(
        self, request_id: int, status: BookingRequestStatus
    ) -> OnlineBookingRequest:
        booking_request = await self._get_pending(request_id)
        booking_request.status = status.value

        await self.db.commit()
        await self.db.refresh(booking_request)

        logger.info(
            "Online booking request closed",
            booking_request_id=request_id,
            status=status.value,
        )
        return booking_request

    async def _get_pending(self, request_id: int) -> OnlineBookingRequest:
        """Lock the request row and check it is still pending.

        The row is re-read even when the session already holds the object, so
        a decision committed by another front desk session is always seen.
        """
        result = await self.db.execute(
            select(OnlineBookingRequest)
            .where(OnlineBookingRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booking_request = result.scalar_one_or_none()
        if not booking_request:
            await self.db.rollback()
            raise NotFoundError("Booking request", request_id)
        if not booking_request.is_pending:
            current_status = booking_request.status
            await self.db.rollback()
            raise InvalidStatusTransitionError(
                f"Booking request {request_id} is already {current_status}"
            )
        return booking_request
