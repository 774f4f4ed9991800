import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class BookingRequestStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class OnlineBookingRequest(Base):
    """Booking request submitted through the public booking form.

    The front desk confirms a request into an appointment, or rejects it.
    """

    __tablename__ = "online_booking_requests"

    id = Column(Integer, primary_key=True, index=True)
    confirmation_token = Column(
        Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True
    )

    # Customer contact (the customer need not have an account)
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=False)

    service_id = Column(
        Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True
    )
    staff_id = Column(
        Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True
    )
    preferred_date = Column(Date, nullable=False, index=True)
    preferred_time = Column(Time, nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(
        String(20), nullable=False, default=BookingRequestStatus.PENDING.value
    )
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    service = relationship("Service")
    staff = relationship("Staff")
    appointment = relationship("Appointment")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'rejected', 'cancelled')",
            name="check_booking_request_status",
        ),
        Index("idx_online_bookings_status", "status"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == BookingRequestStatus.PENDING.value

    def __repr__(self):
        return (
            f"<OnlineBookingRequest(id={self.id}, customer='{self.customer_name}', "
            f"date={self.preferred_date} {self.preferred_time}, "
            f"status='{self.status}')>"
        )
