# clinic_scheduler/errors.py
"""Domain errors raised by the scheduling services.

Routers never build HTTPException for these directly; ``main.py`` registers a
single handler that maps ``SchedulingError.status_code`` onto the response.
"""
from fastapi import status


class SchedulingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SlotUnavailable(SchedulingError):
    """Booking conflicts with an appointment or falls outside the doctor's window."""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Selected time slot is no longer available"):
        super().__init__(message)


class InvalidScheduleConfig(SchedulingError):
    status_code = status.HTTP_400_BAD_REQUEST


class IllegalTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current, attempted, message: str = None):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        super().__init__(
            message or f"Cannot change appointment from '{self.current}' to '{self.attempted}'"
        )


class NotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class SweepInProgress(SchedulingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self):
        super().__init__("A reminder sweep is already running")


class NotificationError(Exception):
    """No channel accepted the message. Callers decide whether this is fatal."""
