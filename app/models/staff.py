import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class StaffRole(enum.Enum):
    ADMIN = "admin"
    SENIOR_TECHNICIAN = "senior_technician"
    TECHNICIAN = "technician"
    FRONT_DESK = "front_desk"


class Staff(Base):
    """Staff member who can be booked for appointments."""

    __tablename__ = "staff"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    phone = Column(String(20), nullable=True)

    role = Column(String(30), nullable=False, default=StaffRole.TECHNICIAN.value)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    schedules = relationship(
        "StaffSchedule", back_populates="staff", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Staff(id={self.id}, name='{self.name}', role={self.role})>"
