from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from clinic_scheduler.scheduling.errors import (
    ConflictError,
    InvalidQuery,
    NoDoctorsForSpecialty,
    NoDoctorsFound,
)
from clinic_scheduler.scheduling.events import InMemoryEventSink
from clinic_scheduler.scheduling.repository import InMemoryRepository
from clinic_scheduler.scheduling.service import SchedulingService
from clinic_scheduler.scheduling.types import AppointmentStatus, DoctorRecord, RoomRecord, WorkingHoursRecord

NOW = datetime(2026, 1, 5, 7, 0)
MONDAY = date(2026, 1, 5)


def _every_weekday(doctor_id: int, start: time, end: time) -> list[WorkingHoursRecord]:
    return [WorkingHoursRecord(doctor_id=doctor_id, weekday=weekday, start=start, end=end) for weekday in range(1, 6)]


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository(
        doctors=[
            DoctorRecord(id=1, name='Dr. Heart', specialty='Cardiology', consultation_duration=30, consultation_price=Decimal('200.00')),
            DoctorRecord(id=2, name='Dr. Beat', specialty='Cardiology', consultation_duration=60, consultation_price=Decimal('250.00')),
            DoctorRecord(id=3, name='Dr. Skin', specialty='Dermatology', consultation_duration=20),
            DoctorRecord(id=4, name='Dr. Gone', specialty='Cardiology', consultation_duration=30, active=False),
        ],
        working_hours=(
            _every_weekday(1, time(8, 0), time(10, 0))
            + _every_weekday(2, time(9, 0), time(11, 0))
            + _every_weekday(3, time(14, 0), time(15, 0))
        ),
        rooms=[RoomRecord(id=1, name='Room 1'), RoomRecord(id=2, name='Room 2'), RoomRecord(id=3, name='Closed', active=False)],
    )


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def service(repository: InMemoryRepository, sink: InMemoryEventSink) -> SchedulingService:
    return SchedulingService(repository, sink, clock=lambda: NOW)


def test_suggest_returns_top_five_with_preferred_doctor_first(service: SchedulingService) -> None:
    slots = service.suggest('cardiology', urgency=5, preferred_doctor_id=2)

    assert len(slots) == 5
    assert [slot.doctor.id for slot in slots] == [2, 2, 2, 2, 2]
    assert [slot.start for slot in slots[:2]] == [time(9, 0), time(10, 0)]
    assert slots[0].reason == 'High urgency, Preferred doctor, Specialty match, Slot available'
    assert slots[0].price == Decimal('250.00')


def test_suggest_without_preference_orders_by_time(service: SchedulingService) -> None:
    slots = service.suggest('Cardiology', urgency=3)

    assert [(slot.start, slot.doctor.id) for slot in slots] == [
        (time(8, 0), 1),
        (time(8, 30), 1),
        (time(9, 0), 1),
        (time(9, 0), 2),
        (time(9, 30), 1),
    ]


def test_suggest_covers_thirty_days_from_preferred_date(repository: InMemoryRepository) -> None:
    service = SchedulingService(repository, clock=lambda: NOW, suggestion_limit=None)

    slots = service.suggest('Dermatology', preferred_date=date(2026, 2, 1))

    assert slots[0].date == date(2026, 2, 2)
    assert max(slot.date for slot in slots) == date(2026, 3, 3)


@pytest.mark.parametrize('specialty', ['', '   '])
def test_suggest_requires_specialty(service: SchedulingService, specialty: str) -> None:
    with pytest.raises(InvalidQuery):
        service.suggest(specialty)


def test_suggest_rejects_out_of_range_urgency(service: SchedulingService) -> None:
    with pytest.raises(InvalidQuery):
        service.suggest('Cardiology', urgency=6)


def test_suggest_unknown_specialty(service: SchedulingService) -> None:
    with pytest.raises(NoDoctorsForSpecialty):
        service.suggest('Oncology')


def test_search_groups_slots_by_day(service: SchedulingService) -> None:
    days = service.search(MONDAY, date(2026, 1, 11), doctor_id=3)

    assert [day.date for day in days] == [date(2026, 1, d) for d in range(5, 10)]
    assert [slot.start for slot in days[0].slots] == [time(14, 0), time(14, 20), time(14, 40)]


def test_search_limit_caps_results(service: SchedulingService) -> None:
    days = service.search(MONDAY, date(2026, 1, 9), specialty='cardio', limit=3)

    assert len(days) == 1
    assert len(days[0].slots) == 3


def test_search_skips_past_slots(repository: InMemoryRepository) -> None:
    service = SchedulingService(repository, clock=lambda: datetime(2026, 1, 5, 9, 10))

    days = service.search(MONDAY, MONDAY, doctor_id=1)

    assert [slot.start for slot in days[0].slots] == [time(9, 30)]


def test_search_hides_booked_slots(service: SchedulingService) -> None:
    service.book(1, 42, MONDAY, time(8, 30))

    days = service.search(MONDAY, MONDAY, doctor_id=1)

    assert time(8, 30) not in [slot.start for slot in days[0].slots]


@pytest.mark.parametrize(
    'kwargs',
    [
        {'date_from': MONDAY, 'date_to': MONDAY},
        {'date_from': MONDAY, 'date_to': date(2026, 1, 4), 'doctor_id': 1},
        {'date_from': MONDAY, 'date_to': MONDAY, 'doctor_id': 1, 'limit': 0},
    ],
)
def test_search_rejects_invalid_queries(service: SchedulingService, kwargs: dict) -> None:
    with pytest.raises(InvalidQuery):
        service.search(**kwargs)


@pytest.mark.parametrize('kwargs', [{'doctor_id': 99}, {'doctor_id': 4}, {'specialty': 'Oncology'}])
def test_search_without_doctors(service: SchedulingService, kwargs: dict) -> None:
    with pytest.raises(NoDoctorsFound):
        service.search(MONDAY, MONDAY, **kwargs)


def test_book_persists_details(service: SchedulingService, sink: InMemoryEventSink) -> None:
    appointment = service.book(2, 42, MONDAY, time(9, 0), consultation_type='follow_up', urgency=2, notes='Annual', room_id=1)

    assert appointment.end == time(10, 0)
    assert appointment.price == Decimal('250.00')
    assert appointment.room_id == 1
    assert appointment.status == AppointmentStatus.SCHEDULED
    assert service.get_appointment(appointment.id) == appointment
    assert sink.types() == ['appointment-booked']


def test_book_rejects_past_start(service: SchedulingService) -> None:
    with pytest.raises(InvalidQuery):
        service.book(1, 42, date(2026, 1, 2), time(9, 0))


def test_book_twice_conflicts(service: SchedulingService) -> None:
    service.book(1, 42, MONDAY, time(8, 0))

    with pytest.raises(ConflictError):
        service.book(1, 43, MONDAY, time(8, 0))


def test_reschedule_rejects_past_target(service: SchedulingService) -> None:
    appointment = service.book(1, 42, MONDAY, time(8, 0))

    with pytest.raises(InvalidQuery):
        service.reschedule(appointment.id, date(2026, 1, 1), time(8, 0))


def test_available_rooms_excludes_busy_rooms(service: SchedulingService) -> None:
    service.book(1, 42, MONDAY, time(8, 0), room_id=1)

    assert [room.id for room in service.available_rooms(MONDAY, time(8, 15), time(8, 45))] == [2]
    assert [room.id for room in service.available_rooms(MONDAY, time(8, 30), time(9, 0))] == [1, 2]

    with pytest.raises(InvalidQuery):
        service.available_rooms(MONDAY, time(9, 0), time(9, 0))


def test_times_with_utc_offset_are_rejected(service: SchedulingService) -> None:
    aware_start = time(9, 0, tzinfo=timezone.utc)
    appointment = service.book(1, 42, MONDAY, time(8, 0))

    with pytest.raises(InvalidQuery):
        service.book(1, 42, MONDAY, aware_start)
    with pytest.raises(InvalidQuery):
        service.reschedule(appointment.id, MONDAY, aware_start)
    with pytest.raises(InvalidQuery):
        service.available_rooms(MONDAY, aware_start, time(9, 30, tzinfo=timezone.utc))


def test_consultation_type_does_not_filter_slots(service: SchedulingService) -> None:
    plain = service.search(MONDAY, MONDAY, doctor_id=1)
    typed = service.search(MONDAY, MONDAY, doctor_id=1, consultation_type='surgery')

    assert typed == plain
    assert service.suggest('Cardiology', consultation_type='surgery') == service.suggest('Cardiology')
