"""Scheduling domain errors"""

from typing import Optional


class SchedulingError(Exception):
    """Base class; ``status_code`` is used by the HTTP exception handler"""

    status_code = 400

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.__class__.__name__
        super().__init__(self.reason)


# Validation - surfaced to the caller, never retried
class ValidationError(SchedulingError):
    status_code = 422


class ServiceInactive(ValidationError):
    pass


class PastOrOutOfWindowDate(ValidationError):
    pass


class PetOwnershipMismatch(ValidationError):
    pass


class InvalidServiceSchedule(ValidationError):
    """Stored service hours or duration cannot produce slots"""


# Not found
class NotFoundError(SchedulingError):
    status_code = 404


class ServiceNotFound(NotFoundError):
    pass


class BookingNotFound(NotFoundError):
    pass


class EmployeeNotFound(NotFoundError):
    pass


# Capacity - caller is expected to ask for alternatives
class CapacityError(SchedulingError):
    status_code = 409


class SlotFull(CapacityError):
    pass


class NoEmployeeAvailable(CapacityError):
    pass


class ConflictError(SchedulingError):
    """Lost a serialization race; BookingStore retries before giving up"""

    status_code = 409


class InvalidStateTransition(SchedulingError):
    status_code = 409

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot change booking status from '{from_status}' to '{to_status}'")


class PersistenceError(SchedulingError):
    status_code = 500
