"""Store boundary of the scheduling engine.

`SchedulingRepository` is what the engine consumes. Reads may run outside any
transaction; every write happens inside `atomic`, which hands the work a
`BookingUnit` bound to one transaction scoped by (doctor_id, date) keys.
"""

import itertools
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import date, datetime, time
from threading import RLock
from typing import TypeVar

from clinic_scheduler.scheduling.errors import ConflictError, NotFoundError
from clinic_scheduler.scheduling.locks import KeyedLocks
from clinic_scheduler.scheduling.types import (
    ACTIVE_STATUSES,
    AppointmentRecord,
    AppointmentStatus,
    DoctorRecord,
    NewAppointment,
    OccupiedInterval,
    RoomRecord,
    WorkingHoursRecord,
)


T = TypeVar('T')
ScopeKey = tuple[int, date]


class SchedulingReader(ABC):
    @abstractmethod
    def find_doctors_by_specialty(self, specialty: str) -> list[DoctorRecord]:
        """Active doctors whose specialty contains `specialty`, case-insensitive."""

    @abstractmethod
    def find_doctor_by_id(self, doctor_id: int) -> DoctorRecord | None:
        ...

    @abstractmethod
    def find_working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord | None:
        """Active envelope for a weekday numbered 0 (Sunday) to 6 (Saturday)."""

    @abstractmethod
    def find_occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        """Scheduled or confirmed appointments in range, ordered by date then start."""

    @abstractmethod
    def find_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        ...

    @abstractmethod
    def find_rooms(self) -> list[RoomRecord]:
        """Active rooms ordered by id."""

    @abstractmethod
    def find_busy_room_ids(self, day: date, start: time, end: time) -> set[int]:
        ...


class BookingUnit(SchedulingReader):
    """Reads and writes bound to a single atomic unit of work."""

    @abstractmethod
    def insert_appointment(self, appointment: NewAppointment) -> AppointmentRecord:
        """Persist a new appointment; raises ConflictError when an active one holds the same start."""

    @abstractmethod
    def update_appointment_status(
        self,
        appointment_id: int,
        status: AppointmentStatus,
        cancellation_reason: str | None = None,
    ) -> AppointmentRecord:
        ...

    @abstractmethod
    def log_action(self, appointment_id: int, action: str, details: dict | None = None) -> None:
        ...


class SchedulingRepository(SchedulingReader):
    @abstractmethod
    def atomic(self, scope: Iterable[ScopeKey], work: Callable[[BookingUnit], T]) -> T:
        """Run `work` in one transaction holding the locks for every scope key.

        Commits when `work` returns and rolls back when it raises.
        """


def _matches_specialty(doctor: DoctorRecord, specialty: str) -> bool:
    return specialty.strip().casefold() in doctor.specialty.casefold()


class InMemoryRepository(SchedulingRepository):
    """Dictionary-backed repository used by tests and local demos."""

    def __init__(
        self,
        doctors: Iterable[DoctorRecord] = (),
        working_hours: Iterable[WorkingHoursRecord] = (),
        rooms: Iterable[RoomRecord] = (),
    ) -> None:
        self._doctors = {doctor.id: doctor for doctor in doctors}
        self._working_hours = list(working_hours)
        self._rooms = {room.id: room for room in rooms}
        self._appointments: dict[int, AppointmentRecord] = {}
        self.logs: list[tuple[int, str, dict]] = []
        self._ids = itertools.count(1)
        self._state_lock = RLock()
        self._scope_locks = KeyedLocks()

    def add_doctor(self, doctor: DoctorRecord) -> None:
        with self._state_lock:
            self._doctors[doctor.id] = doctor

    def add_working_hours(self, working_hours: WorkingHoursRecord) -> None:
        with self._state_lock:
            self._working_hours.append(working_hours)

    def add_room(self, room: RoomRecord) -> None:
        with self._state_lock:
            self._rooms[room.id] = room

    def add_appointment(self, appointment: NewAppointment) -> AppointmentRecord:
        """Seed an appointment outside the ledger."""
        return self.atomic([(appointment.doctor_id, appointment.date)], lambda unit: unit.insert_appointment(appointment))

    def appointments(self) -> list[AppointmentRecord]:
        with self._state_lock:
            return sorted(self._appointments.values(), key=lambda record: record.id)

    def _snapshot(self) -> dict[int, AppointmentRecord]:
        with self._state_lock:
            return dict(self._appointments)

    def find_doctors_by_specialty(self, specialty: str) -> list[DoctorRecord]:
        with self._state_lock:
            doctors = [
                doctor
                for doctor in self._doctors.values()
                if doctor.active and _matches_specialty(doctor, specialty)
            ]
        return sorted(doctors, key=lambda doctor: doctor.id)

    def find_doctor_by_id(self, doctor_id: int) -> DoctorRecord | None:
        with self._state_lock:
            return self._doctors.get(doctor_id)

    def find_working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord | None:
        with self._state_lock:
            for working_hours in self._working_hours:
                if working_hours.doctor_id == doctor_id and working_hours.weekday == weekday and working_hours.active:
                    return working_hours
        return None

    def find_occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        return _occupied(self._snapshot().values(), doctor_id, date_from, date_to)

    def find_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        with self._state_lock:
            return self._appointments.get(appointment_id)

    def find_rooms(self) -> list[RoomRecord]:
        with self._state_lock:
            rooms = [room for room in self._rooms.values() if room.active]
        return sorted(rooms, key=lambda room: room.id)

    def find_busy_room_ids(self, day: date, start: time, end: time) -> set[int]:
        return _busy_rooms(self._snapshot().values(), day, start, end)

    def atomic(self, scope: Iterable[ScopeKey], work: Callable[[BookingUnit], T]) -> T:
        with self._scope_locks.hold(list(scope)):
            unit = _InMemoryUnit(self)
            result = work(unit)
            unit.commit()
            return result

    def _next_id(self) -> int:
        return next(self._ids)


class _InMemoryUnit(BookingUnit):
    """Stages writes and applies them to the parent repository on commit."""

    def __init__(self, repository: InMemoryRepository) -> None:
        self._repository = repository
        self._pending: dict[int, AppointmentRecord] = {}
        self._pending_logs: list[tuple[int, str, dict]] = []

    def _view(self) -> dict[int, AppointmentRecord]:
        view = self._repository._snapshot()
        view.update(self._pending)
        return view

    def find_doctors_by_specialty(self, specialty: str) -> list[DoctorRecord]:
        return self._repository.find_doctors_by_specialty(specialty)

    def find_doctor_by_id(self, doctor_id: int) -> DoctorRecord | None:
        return self._repository.find_doctor_by_id(doctor_id)

    def find_working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord | None:
        return self._repository.find_working_hours(doctor_id, weekday)

    def find_occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        return _occupied(self._view().values(), doctor_id, date_from, date_to)

    def find_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        return self._view().get(appointment_id)

    def find_rooms(self) -> list[RoomRecord]:
        return self._repository.find_rooms()

    def find_busy_room_ids(self, day: date, start: time, end: time) -> set[int]:
        return _busy_rooms(self._view().values(), day, start, end)

    def insert_appointment(self, appointment: NewAppointment) -> AppointmentRecord:
        for existing in self._view().values():
            if (
                existing.is_active
                and existing.doctor_id == appointment.doctor_id
                and existing.date == appointment.date
                and existing.start == appointment.start
            ):
                raise ConflictError(appointment_id=existing.id)

        now = datetime.now()
        record = AppointmentRecord(
            id=self._repository._next_id(),
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            date=appointment.date,
            start=appointment.start,
            end=appointment.end,
            status=appointment.status,
            urgency=appointment.urgency,
            consultation_type=appointment.consultation_type,
            notes=appointment.notes,
            room_id=appointment.room_id,
            price=appointment.price,
            rebooked_from_id=appointment.rebooked_from_id,
            created_at=now,
            updated_at=now,
        )
        self._pending[record.id] = record
        return record

    def update_appointment_status(
        self,
        appointment_id: int,
        status: AppointmentStatus,
        cancellation_reason: str | None = None,
    ) -> AppointmentRecord:
        current = self.find_appointment(appointment_id)
        if current is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

        changes = {'status': status, 'updated_at': datetime.now()}
        if cancellation_reason is not None:
            changes['cancellation_reason'] = cancellation_reason
        updated = replace(current, **changes)
        self._pending[appointment_id] = updated
        return updated

    def log_action(self, appointment_id: int, action: str, details: dict | None = None) -> None:
        self._pending_logs.append((appointment_id, action, dict(details or {})))

    def commit(self) -> None:
        with self._repository._state_lock:
            self._repository._appointments.update(self._pending)
            self._repository.logs.extend(self._pending_logs)


def _occupied(
    appointments: Iterable[AppointmentRecord],
    doctor_id: int,
    date_from: date,
    date_to: date,
) -> list[OccupiedInterval]:
    intervals = [
        OccupiedInterval(appointment_id=record.id, date=record.date, start=record.start, end=record.end)
        for record in appointments
        if record.doctor_id == doctor_id
        and record.status in ACTIVE_STATUSES
        and date_from <= record.date <= date_to
    ]
    return sorted(intervals, key=lambda interval: (interval.date, interval.start, interval.appointment_id))


def _busy_rooms(appointments: Iterable[AppointmentRecord], day: date, start: time, end: time) -> set[int]:
    return {
        record.room_id
        for record in appointments
        if record.room_id is not None
        and record.status in ACTIVE_STATUSES
        and record.date == day
        and record.start < end
        and start < record.end
    }
