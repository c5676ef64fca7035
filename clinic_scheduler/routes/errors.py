from fastapi import HTTPException, status

from clinic_scheduler.scheduling.errors import (
    ConflictError,
    EnvelopeError,
    InvalidQuery,
    InvalidTransitionError,
    NoDoctorsForSpecialty,
    NoDoctorsFound,
    NotFoundError,
    SchedulingError,
    StoreUnavailableError,
)

ERROR_STATUS_CODES: list[tuple[type[SchedulingError], int]] = [
    (ConflictError, status.HTTP_409_CONFLICT),
    (EnvelopeError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (NoDoctorsForSpecialty, status.HTTP_404_NOT_FOUND),
    (NoDoctorsFound, status.HTTP_404_NOT_FOUND),
    (InvalidQuery, status.HTTP_400_BAD_REQUEST),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(exc: SchedulingError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
