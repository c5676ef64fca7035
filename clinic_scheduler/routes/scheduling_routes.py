from datetime import date, datetime, time
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator

from clinic_scheduler.auth.dependencies import STAFF_ROLES, get_current_user
from clinic_scheduler.core import config
from clinic_scheduler.dependencies import get_scheduling_service
from clinic_scheduler.models.user import User
from clinic_scheduler.routes.errors import to_http_exception
from clinic_scheduler.scheduling.errors import SchedulingError
from clinic_scheduler.scheduling.service import SchedulingService
from clinic_scheduler.scheduling.types import AppointmentRecord, DaySlots, SlotCandidate

router = APIRouter(tags=['scheduling'])


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _validate_urgency(value: int) -> int:
    if not config.MIN_URGENCY <= value <= config.MAX_URGENCY:
        raise ValueError(f'Urgency must be between {config.MIN_URGENCY} and {config.MAX_URGENCY}.')
    return value


class SuggestRequest(BaseModel):
    specialty: str
    consultation_type: str | None = None
    urgency: int = config.DEFAULT_URGENCY
    preferred_doctor_id: int | None = None
    preferred_date: date | None = None

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Specialty is required.')
        return normalized

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator('urgency')
    @classmethod
    def validate_urgency(cls, value: int) -> int:
        return _validate_urgency(value)


class SearchRequest(BaseModel):
    doctor_id: int | None = None
    specialty: str | None = None
    date_from: date
    date_to: date
    consultation_type: str | None = None
    limit: int | None = None

    @field_validator('specialty', 'consultation_type')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class BookRequest(BaseModel):
    doctor_id: int
    date: date
    start_time: time
    consultation_type: str
    urgency: int = config.DEFAULT_URGENCY
    notes: str | None = None
    room_id: int | None = None
    patient_id: int | None = None

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Consultation type is required.')
        return normalized

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: time) -> time:
        if value.tzinfo is not None:
            raise ValueError('start_time must not include a UTC offset.')
        return value.replace(second=0, microsecond=0)

    @field_validator('urgency')
    @classmethod
    def validate_urgency(cls, value: int) -> int:
        return _validate_urgency(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized and len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
        return normalized


class SlotResponse(BaseModel):
    doctor_id: int
    doctor_name: str
    specialty: str
    date: date
    start_time: time
    end_time: time
    price: Decimal | None = None
    room_id: int | None = None
    score: float
    reason: str


class DaySlotsResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    room_id: int | None = None
    date: date
    start_time: time
    end_time: time
    status: str
    urgency: int
    consultation_type: str | None = None
    notes: str | None = None
    price: Decimal | None = None
    cancellation_reason: str | None = None
    rebooked_from_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RoomResponse(BaseModel):
    id: int
    name: str
    capacity: int


def slot_response(slot: SlotCandidate) -> SlotResponse:
    return SlotResponse(
        doctor_id=slot.doctor.id,
        doctor_name=slot.doctor.name,
        specialty=slot.doctor.specialty,
        date=slot.date,
        start_time=slot.start,
        end_time=slot.end,
        price=slot.price,
        room_id=slot.room_id,
        score=slot.score,
        reason=slot.reason,
    )


def day_slots_response(day_slots: DaySlots) -> DaySlotsResponse:
    return DaySlotsResponse(date=day_slots.date, slots=[slot_response(slot) for slot in day_slots.slots])


def appointment_response(appointment: AppointmentRecord) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        room_id=appointment.room_id,
        date=appointment.date,
        start_time=appointment.start,
        end_time=appointment.end,
        status=appointment.status.value,
        urgency=appointment.urgency,
        consultation_type=appointment.consultation_type,
        notes=appointment.notes,
        price=appointment.price,
        cancellation_reason=appointment.cancellation_reason,
        rebooked_from_id=appointment.rebooked_from_id,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )


@router.post('/suggest', response_model=list[SlotResponse])
def suggest_appointments(
    data: SuggestRequest,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    del current_user

    try:
        slots = service.suggest(
            specialty=data.specialty,
            consultation_type=data.consultation_type,
            urgency=data.urgency,
            preferred_doctor_id=data.preferred_doctor_id,
            preferred_date=data.preferred_date,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [slot_response(slot) for slot in slots]


@router.post('/search', response_model=list[DaySlotsResponse])
def search_slots(
    data: SearchRequest,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    del current_user

    try:
        days = service.search(
            date_from=data.date_from,
            date_to=data.date_to,
            doctor_id=data.doctor_id,
            specialty=data.specialty,
            consultation_type=data.consultation_type,
            limit=data.limit,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [day_slots_response(day_slots) for day_slots in days]


@router.post('/book', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookRequest,
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    patient_id = current_user.id
    if data.patient_id is not None and (current_user.role or '').lower() in STAFF_ROLES:
        patient_id = data.patient_id

    try:
        appointment = service.book(
            doctor_id=data.doctor_id,
            patient_id=patient_id,
            day=data.date,
            start=data.start_time,
            consultation_type=data.consultation_type,
            urgency=data.urgency,
            notes=data.notes,
            room_id=data.room_id,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return appointment_response(appointment)


@router.get('/rooms/available', response_model=list[RoomResponse])
def list_available_rooms(
    day: date = Query(..., alias='date'),
    start_time: time = Query(...),
    end_time: time = Query(...),
    current_user: User = Depends(get_current_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    del current_user

    try:
        rooms = service.available_rooms(day, start_time, end_time)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [RoomResponse(id=room.id, name=room.name, capacity=room.capacity) for room in rooms]
