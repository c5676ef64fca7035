"""Plain data records exchanged between the scheduling engine and its store."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'


ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class DoctorRecord:
    id: int
    name: str
    specialty: str
    consultation_duration: int
    buffer_interval: int = 0
    consultation_price: Decimal = Decimal('0')
    active: bool = True

    @property
    def slot_step_minutes(self) -> int:
        return self.consultation_duration + self.buffer_interval


@dataclass(frozen=True)
class WorkingHoursRecord:
    doctor_id: int
    weekday: int
    start: time
    end: time
    active: bool = True
    room_id: int | None = None


@dataclass(frozen=True)
class RoomRecord:
    id: int
    name: str
    capacity: int = 1
    active: bool = True


@dataclass(frozen=True)
class OccupiedInterval:
    appointment_id: int
    date: date
    start: time
    end: time


@dataclass(frozen=True)
class NewAppointment:
    doctor_id: int
    patient_id: int
    date: date
    start: time
    end: time
    urgency: int
    consultation_type: str | None = None
    notes: str | None = None
    room_id: int | None = None
    price: Decimal | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    rebooked_from_id: int | None = None


@dataclass(frozen=True)
class AppointmentRecord:
    id: int
    doctor_id: int
    patient_id: int
    date: date
    start: time
    end: time
    status: AppointmentStatus
    urgency: int
    consultation_type: str | None = None
    notes: str | None = None
    room_id: int | None = None
    price: Decimal | None = None
    cancellation_reason: str | None = None
    rebooked_from_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class BookingDetails:
    """Caller supplied attributes stored on a new appointment."""

    urgency: int = 3
    consultation_type: str | None = None
    notes: str | None = None
    room_id: int | None = None


@dataclass(frozen=True)
class SlotCandidate:
    doctor: DoctorRecord
    date: date
    start: time
    end: time
    price: Decimal | None = None
    room_id: int | None = None
    score: float = 0.0
    reason: str = ''

    @property
    def sort_key(self) -> tuple[date, time, int]:
        return (self.date, self.start, self.doctor.id)


@dataclass(frozen=True)
class SuggestionCriteria:
    urgency: int
    preferred_doctor_id: int | None = None
    requested_specialty: str | None = None


@dataclass
class DaySlots:
    date: date
    slots: list[SlotCandidate] = field(default_factory=list)
