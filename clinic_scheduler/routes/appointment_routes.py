from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from clinic_scheduler.auth.dependencies import STAFF_ROLES, get_current_user, require_staff
from clinic_scheduler.core import config
from clinic_scheduler.dependencies import get_scheduling_service
from clinic_scheduler.models.user import User
from clinic_scheduler.routes.errors import to_http_exception
from clinic_scheduler.routes.scheduling_routes import AppointmentResponse, appointment_response
from clinic_scheduler.scheduling.errors import SchedulingError
from clinic_scheduler.scheduling.service import SchedulingService
from clinic_scheduler.scheduling.types import AppointmentRecord

router = APIRouter(tags=['appointments'])


def _validate_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Reason must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _validate_reason(value)


class RescheduleAppointmentRequest(BaseModel):
    new_date: date
    new_start_time: time
    reason: str | None = None

    @field_validator('new_start_time')
    @classmethod
    def validate_new_start_time(cls, value: time) -> time:
        if value.tzinfo is not None:
            raise ValueError('new_start_time must not include a UTC offset.')
        return value.replace(second=0, microsecond=0)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _validate_reason(value)


def ensure_can_manage(appointment: AppointmentRecord, current_user: User) -> None:
    if (current_user.role or '').lower() in STAFF_ROLES:
        return
    if appointment.patient_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the patient who booked this appointment can manage it.',
        )


def load_appointment(appointment_id: int, current_user: User, service: SchedulingService) -> AppointmentRecord:
    try:
        appointment = service.get_appointment(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    ensure_can_manage(appointment, current_user)
    return appointment


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return appointment_response(load_appointment(appointment_id, current_user, service))


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(require_staff),
    service: SchedulingService = Depends(get_scheduling_service),
):
    del current_user

    try:
        appointment = service.confirm(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return appointment_response(appointment)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(require_staff),
    service: SchedulingService = Depends(get_scheduling_service),
):
    del current_user

    try:
        appointment = service.complete(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return appointment_response(appointment)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    load_appointment(appointment_id, current_user, service)

    try:
        appointment = service.cancel(appointment_id, data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return appointment_response(appointment)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    load_appointment(appointment_id, current_user, service)

    try:
        appointment = service.reschedule(appointment_id, data.new_date, data.new_start_time, data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return appointment_response(appointment)
