from concurrent.futures import ThreadPoolExecutor
from datetime import date, time
from decimal import Decimal
from threading import Barrier

import pytest

from clinic_scheduler.scheduling.errors import (
    AlreadyTerminalError,
    ConflictError,
    EnvelopeError,
    InvalidTransitionError,
    NoEnvelopeConfigured,
    NotFoundError,
)
from clinic_scheduler.scheduling.events import InMemoryEventSink
from clinic_scheduler.scheduling.ledger import BookingLedger, can_transition
from clinic_scheduler.scheduling.repository import InMemoryRepository
from clinic_scheduler.scheduling.types import (
    AppointmentStatus,
    BookingDetails,
    DoctorRecord,
    RoomRecord,
    WorkingHoursRecord,
)

MONDAY = date(2026, 1, 5)
TUESDAY = date(2026, 1, 6)


class FailingEventSink:
    def emit(self, event) -> None:
        raise RuntimeError('broker down')


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository(
        doctors=[
            DoctorRecord(
                id=1,
                name='Dr. A',
                specialty='Cardiology',
                consultation_duration=30,
                consultation_price=Decimal('180.00'),
            ),
            DoctorRecord(id=2, name='Dr. Retired', specialty='Cardiology', consultation_duration=30, active=False),
        ],
        working_hours=[
            WorkingHoursRecord(doctor_id=1, weekday=1, start=time(8, 0), end=time(12, 0)),
            WorkingHoursRecord(doctor_id=1, weekday=2, start=time(8, 0), end=time(12, 0)),
            WorkingHoursRecord(doctor_id=2, weekday=1, start=time(8, 0), end=time(12, 0)),
        ],
        rooms=[RoomRecord(id=1, name='Room 1'), RoomRecord(id=2, name='Closed', active=False)],
    )


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def ledger(repository: InMemoryRepository, sink: InMemoryEventSink) -> BookingLedger:
    return BookingLedger(repository, sink)


def test_reserve_stamps_end_and_price(ledger: BookingLedger, repository: InMemoryRepository, sink) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0), BookingDetails(urgency=4, consultation_type='first_visit'))

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.end == time(9, 30)
    assert appointment.price == Decimal('180.00')
    assert appointment.urgency == 4
    assert appointment.consultation_type == 'first_visit'
    assert sink.types() == ['appointment-booked']
    assert sink.events[0].patient_id == 42
    assert repository.logs[0][:2] == (appointment.id, 'appointment_created')


def test_reserve_rejects_overlapping_start(ledger: BookingLedger, repository: InMemoryRepository, sink) -> None:
    ledger.reserve(1, 42, MONDAY, time(9, 0))

    with pytest.raises(ConflictError) as exc_info:
        ledger.reserve(1, 43, MONDAY, time(9, 15))

    assert exc_info.value.context['existing_start'] == '09:00'
    assert len(repository.appointments()) == 1
    assert sink.types() == ['appointment-booked']


def test_touching_appointments_are_allowed(ledger: BookingLedger) -> None:
    ledger.reserve(1, 42, MONDAY, time(9, 0))
    ledger.reserve(1, 43, MONDAY, time(9, 30))
    ledger.reserve(1, 44, MONDAY, time(8, 30))


@pytest.mark.parametrize('start', [time(7, 30), time(11, 45), time(12, 0), time(23, 45)])
def test_reserve_outside_working_hours_fails(ledger: BookingLedger, start: time) -> None:
    with pytest.raises(EnvelopeError):
        ledger.reserve(1, 42, MONDAY, start)


def test_reserve_on_day_without_hours_fails(ledger: BookingLedger) -> None:
    with pytest.raises(NoEnvelopeConfigured):
        ledger.reserve(1, 42, date(2026, 1, 4), time(9, 0))


@pytest.mark.parametrize('doctor_id', [2, 99])
def test_reserve_requires_active_doctor(ledger: BookingLedger, doctor_id: int) -> None:
    with pytest.raises(NotFoundError):
        ledger.reserve(doctor_id, 42, MONDAY, time(9, 0))


def test_concurrent_reservations_for_same_slot_have_one_winner(ledger: BookingLedger, repository) -> None:
    attempts = 10
    barrier = Barrier(attempts)

    def attempt(patient_id: int) -> str:
        barrier.wait()
        try:
            ledger.reserve(1, patient_id, MONDAY, time(10, 0))
        except ConflictError:
            return 'conflict'
        return 'booked'

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(100, 100 + attempts)))

    assert outcomes.count('booked') == 1
    assert outcomes.count('conflict') == attempts - 1
    assert len([record for record in repository.appointments() if record.is_active]) == 1


def test_cancel_releases_the_slot(ledger: BookingLedger, repository: InMemoryRepository, sink) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0))

    cancelled = ledger.cancel(appointment.id, 'Patient request')
    rebooked = ledger.reserve(1, 43, MONDAY, time(9, 0))

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == 'Patient request'
    assert rebooked.patient_id == 43
    assert sink.types() == ['appointment-booked', 'appointment-cancelled', 'appointment-booked']
    assert (appointment.id, 'appointment_cancelled', {'from': 'scheduled', 'to': 'cancelled', 'reason': 'Patient request'}) in repository.logs


def test_lifecycle_confirm_then_complete(ledger: BookingLedger, sink) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0))

    assert ledger.confirm(appointment.id).status == AppointmentStatus.CONFIRMED
    assert ledger.complete(appointment.id).status == AppointmentStatus.COMPLETED
    assert sink.types() == ['appointment-booked', 'appointment-confirmed', 'appointment-completed']


def test_complete_requires_confirmation(ledger: BookingLedger) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0))

    with pytest.raises(InvalidTransitionError) as exc_info:
        ledger.complete(appointment.id)

    assert not isinstance(exc_info.value, AlreadyTerminalError)


def test_terminal_appointments_cannot_change(ledger: BookingLedger, sink) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0))
    ledger.cancel(appointment.id)

    with pytest.raises(AlreadyTerminalError):
        ledger.cancel(appointment.id)
    with pytest.raises(AlreadyTerminalError):
        ledger.confirm(appointment.id)
    with pytest.raises(AlreadyTerminalError):
        ledger.reschedule(appointment.id, MONDAY, time(10, 0))

    assert sink.types() == ['appointment-booked', 'appointment-cancelled']


def test_unknown_appointment_is_not_found(ledger: BookingLedger) -> None:
    with pytest.raises(NotFoundError):
        ledger.cancel(404)


@pytest.mark.parametrize(
    ('current', 'target', 'allowed'),
    [
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, True),
        (AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED, False),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, True),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED, False),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, False),
        (AppointmentStatus.RESCHEDULED, AppointmentStatus.CONFIRMED, False),
    ],
)
def test_transition_table(current: AppointmentStatus, target: AppointmentStatus, allowed: bool) -> None:
    assert can_transition(current, target) is allowed


def test_reschedule_moves_the_appointment(ledger: BookingLedger, repository: InMemoryRepository, sink) -> None:
    original = ledger.reserve(1, 42, MONDAY, time(9, 0), BookingDetails(urgency=5, notes='Chest pain'))

    replacement = ledger.reschedule(original.id, TUESDAY, time(11, 0), 'Clinic request')

    old = repository.find_appointment(original.id)
    assert old.status == AppointmentStatus.RESCHEDULED
    assert old.cancellation_reason == 'Clinic request'
    assert replacement.status == AppointmentStatus.SCHEDULED
    assert (replacement.date, replacement.start, replacement.end) == (TUESDAY, time(11, 0), time(11, 30))
    assert replacement.rebooked_from_id == original.id
    assert replacement.price == original.price
    assert replacement.notes == 'Chest pain'
    assert sink.types() == ['appointment-booked', 'appointment-rescheduled']
    assert sink.events[-1].previous_appointment_id == original.id
    assert sink.events[-1].appointment_id == replacement.id


def test_reschedule_may_overlap_its_own_interval(ledger: BookingLedger) -> None:
    original = ledger.reserve(1, 42, MONDAY, time(9, 0))

    replacement = ledger.reschedule(original.id, MONDAY, time(9, 15))

    assert replacement.start == time(9, 15)


def test_failed_reschedule_keeps_original(ledger: BookingLedger, repository: InMemoryRepository, sink) -> None:
    original = ledger.reserve(1, 42, MONDAY, time(9, 0))
    ledger.reserve(1, 43, TUESDAY, time(10, 0))

    with pytest.raises(ConflictError):
        ledger.reschedule(original.id, TUESDAY, time(10, 15))
    with pytest.raises(EnvelopeError):
        ledger.reschedule(original.id, TUESDAY, time(13, 0))

    assert repository.find_appointment(original.id).status == AppointmentStatus.SCHEDULED
    assert len(repository.appointments()) == 2
    assert sink.types() == ['appointment-booked', 'appointment-booked']
    assert not any(action == 'appointment_rescheduled' for _, action, _ in repository.logs)


def test_failing_event_sink_does_not_undo_booking(repository: InMemoryRepository, caplog) -> None:
    ledger = BookingLedger(repository, FailingEventSink())

    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0))

    assert repository.find_appointment(appointment.id).is_active
    assert 'Failed to publish appointment-booked' in caplog.text


def test_reserve_keeps_requested_room(ledger: BookingLedger) -> None:
    appointment = ledger.reserve(1, 42, MONDAY, time(9, 0), BookingDetails(room_id=1))

    assert appointment.room_id == 1


@pytest.mark.parametrize('room_id', [2, 999])
def test_reserve_rejects_unknown_or_inactive_room(ledger: BookingLedger, repository: InMemoryRepository, room_id: int) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        ledger.reserve(1, 42, MONDAY, time(9, 0), BookingDetails(room_id=room_id))

    assert exc_info.value.context == {'room_id': room_id}
    assert repository.appointments() == []
