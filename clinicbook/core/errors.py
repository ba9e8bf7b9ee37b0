# clinicbook/core/errors.py
from __future__ import annotations


# Service-level errors; callers map them to client-facing rejections
class BookingError(Exception):
    """
    Base class for every recoverable scheduling/booking error.

    `code` is a stable machine-readable identifier (e.g. "slot_already_booked"),
    `status` is the HTTP status a transport layer would answer with.
    """

    status: int = 400
    default_code: str = "booking_error"

    def __init__(self, code: str | None = None, message: str | None = None):
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)


class NotFound(BookingError):
    """
    Referenced entity (patient, doctor, appointment, override) is absent.
    """

    status = 404
    default_code = "not_found"


class Conflict(BookingError):
    """
    Slot already taken or the appointment is in a state that forbids the transition.
    """

    status = 409
    default_code = "slot_already_booked"


class Forbidden(BookingError):
    """
    Acting user is not allowed to operate on this resource.
    """

    status = 403
    default_code = "forbidden"


class InvalidCode(BookingError):
    status = 400
    default_code = "invalid_confirmation_code"


class AlreadyConfirmed(BookingError):
    status = 400
    default_code = "appointment_already_confirmed"


class MalformedInput(BookingError):
    """
    Bad time strings, invariant violations in schedules, missing required fields.
    """

    status = 422
    default_code = "malformed_input"


__all__ = [
    "BookingError",
    "NotFound",
    "Conflict",
    "Forbidden",
    "InvalidCode",
    "AlreadyConfirmed",
    "MalformedInput",
]
