"""Error taxonomy for the scheduling engine.

Conflicts and unavailability are expected outcomes that callers handle by
choosing another slot. Invalid transitions point at a caller bug.
"""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling engine."""

    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None, **context) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context


class ConflictError(SchedulingError):
    default_message = 'This time is already booked.'


class EnvelopeError(SchedulingError):
    default_message = 'Appointment is outside the doctor working hours.'


class NoEnvelopeConfigured(EnvelopeError):
    default_message = 'Doctor is not available on this day.'


class InvalidTransitionError(SchedulingError):
    default_message = 'Appointment status change is not allowed.'


class AlreadyTerminalError(InvalidTransitionError):
    default_message = 'Appointment is already closed.'


class NotFoundError(SchedulingError):
    default_message = 'Not found.'


class NoDoctorsForSpecialty(SchedulingError):
    default_message = 'No doctors found for this specialty.'


class NoDoctorsFound(SchedulingError):
    default_message = 'No doctors found.'


class InvalidQuery(SchedulingError):
    default_message = 'Invalid scheduling query.'


class StoreUnavailableError(SchedulingError):
    default_message = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
