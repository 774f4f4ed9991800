from typing import Optional


class SchedulingError(Exception):
    """Base exception for scheduling and booking operations."""


class InvalidInputError(SchedulingError, ValueError):
    """Raised when a caller passes arguments the scheduler cannot accept."""


class NotFoundError(SchedulingError):
    """Raised when a referenced record does not exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class InvalidStatusTransitionError(SchedulingError):
    """Raised when a record cannot move to the requested state."""


class SlotUnavailableError(SchedulingError):
    """Raised when the commit-time conflict check rejects a booking.

    This is an expected outcome: the slot was taken after availability was
    displayed. Callers should re-fetch availability and let the user pick
    another slot.
    """

    def __init__(
        self,
        message: str = "This slot was just taken, please choose another",
        conflicting_appointment_ids: Optional[list[int]] = None,
    ):
        self.message = message
        self.conflicting_appointment_ids = conflicting_appointment_ids or []
        super().__init__(message)
