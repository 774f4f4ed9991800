import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DDL,
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
    event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class AppointmentStatus(enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Appointments in these states no longer hold their time slot
NON_BLOCKING_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
NON_BLOCKING_STATUS_VALUES = frozenset(s.value for s in NON_BLOCKING_STATUSES)


def status_blocks_schedule(status: str) -> bool:
    """Whether an appointment in ``status`` still occupies its time window."""
    return status not in NON_BLOCKING_STATUS_VALUES


ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.IN_PROGRESS: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.COMPLETED: [],  # Final state
    AppointmentStatus.CANCELLED: [],  # Final state
    AppointmentStatus.NO_SHOW: [],  # Final state
}

EXCLUSION_CONSTRAINT_NAME = "excl_appointments_staff_overlap"


class Appointment(Base):
    """Booked time window for one staff member on one calendar day."""

    __tablename__ = "appointments"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)

    # Participants
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    customer_id = Column(Integer, nullable=True)

    # Scheduling details (local salon time, no timezone conversion)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Status management
    status = Column(
        String(20),
        nullable=False,
        default=AppointmentStatus.SCHEDULED.value,
        index=True,
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), server_default=func.now())

    notes = Column(Text, nullable=True)

    # Cancellation
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Rescheduling
    reschedule_count = Column(Integer, default=0, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_end_after_start"),
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in_progress', "
            "'completed', 'cancelled', 'no_show')",
            name="check_appointment_status",
        ),
        CheckConstraint(
            "reschedule_count >= 0", name="check_non_negative_reschedule_count"
        ),
        Index("idx_appointments_staff_date", "staff_id", "appointment_date"),
    )

    staff = relationship("Staff")
    service = relationship("Service")

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    @property
    def blocks_schedule(self) -> bool:
        return status_blocks_schedule(self.status)

    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.status_enum, [])

    def transition_to(
        self, new_status: AppointmentStatus, notes: Optional[str] = None
    ) -> bool:
        """Move to ``new_status`` if the lifecycle allows it."""
        if not self.can_transition_to(new_status):
            return False

        now = datetime.now(timezone.utc)
        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = now

        if new_status == AppointmentStatus.CANCELLED:
            self.cancelled_at = now
            if notes:
                self.cancellation_reason = notes
        elif notes:
            self.notes = f"{self.notes}\n{notes}" if self.notes else notes

        return True

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, staff_id={self.staff_id}, "
            f"date={self.appointment_date}, "
            f"{self.start_time}-{self.end_time}, status='{self.status}')>"
        )


# PostgreSQL enforces the non-overlap invariant itself; other backends rely on
# the per-staff row lock taken by the booking workflow.
event.listen(
    Appointment.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(
        dialect="postgresql"
    ),
)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE appointments ADD CONSTRAINT {EXCLUSION_CONSTRAINT_NAME} "
        "EXCLUDE USING gist ("
        "staff_id WITH =, "
        "tsrange(appointment_date + start_time, appointment_date + end_time) "
        "WITH &&"
        ") WHERE (status NOT IN ('cancelled', 'no_show'))"
    ).execute_if(dialect="postgresql"),
)
