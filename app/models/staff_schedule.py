import enum
from datetime import date

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class WeekDay(enum.Enum):
    """Day of week as stored in ``staff_schedules.day_of_week``."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, day: date) -> "WeekDay":
        # date.weekday() counts from Monday = 0
        return cls((day.weekday() + 1) % 7)


class StaffSchedule(Base):
    """Weekly working hours of a staff member, one row per day of week."""

    __tablename__ = "staff_schedules"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(
        Integer, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )

    # Schedule details
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    staff = relationship("Staff", back_populates="schedules")

    __table_args__ = (
        UniqueConstraint("staff_id", "day_of_week", name="uq_staff_schedule_day"),
        CheckConstraint(
            "day_of_week BETWEEN 0 AND 6", name="check_day_of_week_range"
        ),
    )

    @property
    def weekday(self) -> WeekDay:
        return WeekDay(self.day_of_week)

    def __repr__(self):
        return (
            f"<StaffSchedule(id={self.id}, staff_id={self.staff_id}, "
            f"{self.weekday.name}: {self.start_time}-{self.end_time}, "
            f"available={self.is_available})>"
        )
