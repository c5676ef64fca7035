"""SQLAlchemy implementation of the scheduling repository.

Bookings for one (doctor, date) are serialized three ways: a process-local
striped lock, a `SELECT ... FOR UPDATE` on the matching `schedule_locks` row,
and the partial unique index on active (doctor_id, date, start_time).
"""

import logging
import time as time_module
from collections.abc import Callable, Iterable
from datetime import date, time
from typing import TypeVar

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinic_scheduler.core import config
from clinic_scheduler.database import SessionLocal
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.appointment_log import AppointmentLog
from clinic_scheduler.models.doctor import Doctor, WorkingHours
from clinic_scheduler.models.room import Room
from clinic_scheduler.models.schedule_lock import ScheduleLock
from clinic_scheduler.scheduling.errors import ConflictError, NotFoundError, StoreUnavailableError
from clinic_scheduler.scheduling.locks import KeyedLocks
from clinic_scheduler.scheduling.repository import BookingUnit, SchedulingReader, SchedulingRepository, ScopeKey
from clinic_scheduler.scheduling.types import (
    AppointmentRecord,
    AppointmentStatus,
    DoctorRecord,
    NewAppointment,
    OccupiedInterval,
    RoomRecord,
    WorkingHoursRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

ACTIVE_STATUS_VALUES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)

ACTIVE_SLOT_CONSTRAINT = 'uq_appointments_active_slot'
# SQLite reports the columns of a violated unique index instead of its name.
_ACTIVE_SLOT_SQLITE_COLUMNS = 'appointments.doctor_id, appointments.date, appointments.start_time'
_FOREIGN_KEY_MARKERS = ('FOREIGN KEY constraint failed', 'violates foreign key constraint')

_UPSERT_BY_DIALECT = {
    'postgresql': postgresql_insert,
    'sqlite': sqlite_insert,
}


def is_transient_error(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def is_active_slot_violation(exc: IntegrityError) -> bool:
    constraint_name = getattr(getattr(exc.orig, 'diag', None), 'constraint_name', None)
    if constraint_name:
        return constraint_name == ACTIVE_SLOT_CONSTRAINT
    message = str(exc.orig)
    return ACTIVE_SLOT_CONSTRAINT in message or _ACTIVE_SLOT_SQLITE_COLUMNS in message


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _FOREIGN_KEY_MARKERS)


def to_doctor_record(row: Doctor) -> DoctorRecord:
    return DoctorRecord(
        id=row.id,
        name=row.name,
        specialty=row.specialty,
        consultation_duration=row.consultation_duration,
        buffer_interval=row.buffer_interval or 0,
        consultation_price=row.consultation_price,
        active=bool(row.active),
    )


def to_appointment_record(row: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=row.id,
        doctor_id=row.doctor_id,
        patient_id=row.patient_id,
        date=row.date,
        start=row.start_time,
        end=row.end_time,
        status=AppointmentStatus(row.status),
        urgency=row.urgency,
        consultation_type=row.consultation_type,
        notes=row.notes,
        room_id=row.room_id,
        price=row.price,
        cancellation_reason=row.cancellation_reason,
        rebooked_from_id=row.rebooked_from_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SessionQueries(SchedulingReader):
    """Read queries bound to one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_doctors_by_specialty(self, specialty: str) -> list[DoctorRecord]:
        rows = self.session.query(Doctor).filter(
            Doctor.active.is_(True),
            Doctor.specialty.icontains(specialty.strip(), autoescape=True),
        ).order_by(Doctor.id.asc()).all()
        return [to_doctor_record(row) for row in rows]

    def find_doctor_by_id(self, doctor_id: int) -> DoctorRecord | None:
        row = self.session.get(Doctor, doctor_id)
        return to_doctor_record(row) if row else None

    def find_working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord | None:
        row = self.session.query(WorkingHours).filter(
            WorkingHours.doctor_id == doctor_id,
            WorkingHours.weekday == weekday,
            WorkingHours.active.is_(True),
        ).first()
        if not row:
            return None
        return WorkingHoursRecord(
            doctor_id=row.doctor_id,
            weekday=row.weekday,
            start=row.start_time,
            end=row.end_time,
            active=bool(row.active),
            room_id=row.room_id,
        )

    def find_occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        rows = self.session.query(
            Appointment.id,
            Appointment.date,
            Appointment.start_time,
            Appointment.end_time,
        ).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUS_VALUES),
            Appointment.date >= date_from,
            Appointment.date <= date_to,
        ).order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()

        return [
            OccupiedInterval(appointment_id=appointment_id, date=day, start=start_time, end=end_time)
            for appointment_id, day, start_time, end_time in rows
        ]

    def find_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        row = self.session.get(Appointment, appointment_id)
        return to_appointment_record(row) if row else None

    def find_rooms(self) -> list[RoomRecord]:
        rows = self.session.query(Room).filter(Room.active.is_(True)).order_by(Room.id.asc()).all()
        return [
            RoomRecord(id=row.id, name=row.name, capacity=row.capacity, active=bool(row.active))
            for row in rows
        ]

    def find_busy_room_ids(self, day: date, start: time, end: time) -> set[int]:
        rows = self.session.query(Appointment.room_id).filter(
            Appointment.room_id.is_not(None),
            Appointment.status.in_(ACTIVE_STATUS_VALUES),
            Appointment.date == day,
            Appointment.start_time < end,
            Appointment.end_time > start,
        ).all()
        return {room_id for (room_id,) in rows}


class SqlAlchemyBookingUnit(SessionQueries, BookingUnit):
    """Writes flushed into the surrounding transaction; the repository commits."""

    def insert_appointment(self, appointment: NewAppointment) -> AppointmentRecord:
        row = Appointment(
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
            rebooked_from_id=appointment.rebooked_from_id,
        )
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as exc:
            if is_active_slot_violation(exc):
                raise ConflictError(
                    doctor_id=appointment.doctor_id,
                    date=appointment.date.isoformat(),
                    start=appointment.start.isoformat(timespec='minutes'),
                ) from exc
            if is_foreign_key_violation(exc):
                raise NotFoundError(
                    'Patient, doctor or room not found.',
                    patient_id=appointment.patient_id,
                    room_id=appointment.room_id,
                ) from exc
            raise
        self.session.refresh(row)
        return to_appointment_record(row)

    def update_appointment_status(
        self,
        appointment_id: int,
        status: AppointmentStatus,
        cancellation_reason: str | None = None,
    ) -> AppointmentRecord:
        row = self.session.get(Appointment, appointment_id)
        if row is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

        row.status = status.value
        if cancellation_reason is not None:
            row.cancellation_reason = cancellation_reason
        self.session.flush()
        self.session.refresh(row)
        return to_appointment_record(row)

    def log_action(self, appointment_id: int, action: str, details: dict | None = None) -> None:
        self.session.add(AppointmentLog(appointment_id=appointment_id, action=action, details=details or {}))
        self.session.flush()


class SqlAlchemyRepository(SchedulingRepository):
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        retry_attempts: int = config.STORE_RETRY_ATTEMPTS,
        retry_backoff_seconds: float = config.STORE_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time_module.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep
        self._scope_locks = KeyedLocks()

    def _with_retry(self, operation: str, action: Callable[[], T], **context) -> T:
        attempts = self._retry_attempts + 1
        for attempt in range(1, attempts + 1):
            try:
                return action()
            except SQLAlchemyError as exc:
                if is_transient_error(exc) and attempt < attempts:
                    delay = self._retry_backoff_seconds * attempt
                    logger.warning(
                        'Transient store error during %s (attempt %d/%d), retrying in %.2fs: %s',
                        operation,
                        attempt,
                        attempts,
                        delay,
                        exc,
                    )
                    self._sleep(delay)
                    continue
                logger.exception('Store unavailable during %s %s', operation, context)
                raise StoreUnavailableError(operation=operation, **context) from exc
        raise AssertionError('unreachable')

    def _read(self, operation: str, query: Callable[[SessionQueries], T], **context) -> T:
        def action() -> T:
            session = self._session_factory()
            try:
                return query(SessionQueries(session))
            finally:
                session.close()

        return self._with_retry(operation, action, **context)

    def find_doctors_by_specialty(self, specialty: str) -> list[DoctorRecord]:
        return self._read('find_doctors_by_specialty', lambda q: q.find_doctors_by_specialty(specialty), specialty=specialty)

    def find_doctor_by_id(self, doctor_id: int) -> DoctorRecord | None:
        return self._read('find_doctor_by_id', lambda q: q.find_doctor_by_id(doctor_id), doctor_id=doctor_id)

    def find_working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord | None:
        return self._read(
            'find_working_hours',
            lambda q: q.find_working_hours(doctor_id, weekday),
            doctor_id=doctor_id,
            weekday=weekday,
        )

    def find_occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        return self._read(
            'find_occupied_intervals',
            lambda q: q.find_occupied_intervals(doctor_id, date_from, date_to),
            doctor_id=doctor_id,
            date_from=date_from.isoformat(),
            date_to=date_to.isoformat(),
        )

    def find_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        return self._read('find_appointment', lambda q: q.find_appointment(appointment_id), appointment_id=appointment_id)

    def find_rooms(self) -> list[RoomRecord]:
        return self._read('find_rooms', lambda q: q.find_rooms())

    def find_busy_room_ids(self, day: date, start: time, end: time) -> set[int]:
        return self._read('find_busy_room_ids', lambda q: q.find_busy_room_ids(day, start, end), date=day.isoformat())

    def atomic(self, scope: Iterable[ScopeKey], work: Callable[[BookingUnit], T]) -> T:
        keys = sorted(set(scope))
        with self._scope_locks.hold(keys):
            return self._with_retry(
                'atomic',
                lambda: self._run_unit(keys, work),
                scope=[(doctor_id, day.isoformat()) for doctor_id, day in keys],
            )

    def _run_unit(self, keys: list[ScopeKey], work: Callable[[BookingUnit], T]) -> T:
        session = self._session_factory()
        try:
            for doctor_id, day in keys:
                self._lock_scope(session, doctor_id, day)
            result = work(SqlAlchemyBookingUnit(session))
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _lock_scope(session: Session, doctor_id: int, day: date) -> None:
        dialect_name = session.get_bind().dialect.name
        upsert = _UPSERT_BY_DIALECT.get(dialect_name)
        if upsert is not None:
            session.execute(
                upsert(ScheduleLock)
                .values(doctor_id=doctor_id, date=day)
                .on_conflict_do_nothing(index_elements=['doctor_id', 'date'])
            )
        elif session.get(ScheduleLock, (doctor_id, day)) is None:
            session.add(ScheduleLock(doctor_id=doctor_id, date=day))
            session.flush()

        session.query(ScheduleLock).filter(
            ScheduleLock.doctor_id == doctor_id,
            ScheduleLock.date == day,
        ).with_for_update().one()
