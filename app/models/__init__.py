# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    online_booking,
    service,
    staff,
    staff_schedule,
)

__all__ = [
    "appointment",
    "online_booking",
    "service",
    "staff",
    "staff_schedule",
]
