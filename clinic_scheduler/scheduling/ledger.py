"""Authoritative appointment lifecycle.

Every write runs inside `SchedulingRepository.atomic`, scoped by the
(doctor_id, date) keys it touches. Availability is re-validated against live
data inside that unit, never taken from an earlier search.

    scheduled  -> confirmed | cancelled | rescheduled
    confirmed  -> completed | cancelled | rescheduled
    completed, cancelled, rescheduled are terminal
"""

import logging
from collections.abc import Callable
from datetime import date, time
from typing import TypeVar

from clinic_scheduler.scheduling.calendar import SlotCalendar, add_minutes
from clinic_scheduler.scheduling.conflicts import find_overlap, within_envelope
from clinic_scheduler.scheduling.errors import (
    AlreadyTerminalError,
    ConflictError,
    EnvelopeError,
    InvalidTransitionError,
    NotFoundError,
)
from clinic_scheduler.scheduling.events import (
    APPOINTMENT_BOOKED,
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_RESCHEDULED,
    EventSink,
    LoggingEventSink,
    build_event,
)
from clinic_scheduler.scheduling.repository import BookingUnit, SchedulingReader, SchedulingRepository
from clinic_scheduler.scheduling.types import (
    AppointmentRecord,
    AppointmentStatus,
    BookingDetails,
    DoctorRecord,
    NewAppointment,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.RESCHEDULED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(appointment: AppointmentRecord, target: AppointmentStatus) -> None:
    if can_transition(appointment.status, target):
        return
    if appointment.status in TERMINAL_STATUSES:
        raise AlreadyTerminalError(
            f'Appointment is already {appointment.status.value}.',
            appointment_id=appointment.id,
            status=appointment.status.value,
            target=target.value,
        )
    raise InvalidTransitionError(
        f'Cannot change appointment from {appointment.status.value} to {target.value}.',
        appointment_id=appointment.id,
        status=appointment.status.value,
        target=target.value,
    )


class BookingLedger:
    def __init__(self, repository: SchedulingRepository, event_sink: EventSink | None = None) -> None:
        self._repository = repository
        self._event_sink = event_sink or LoggingEventSink()

    def reserve(
        self,
        doctor_id: int,
        patient_id: int,
        day: date,
        start: time,
        details: BookingDetails | None = None,
    ) -> AppointmentRecord:
        details = details or BookingDetails()

        def work(unit: BookingUnit) -> AppointmentRecord:
            doctor, end = self._validate_slot(unit, doctor_id, day, start)
            if details.room_id is not None:
                self._require_room(unit, details.room_id)
            appointment = unit.insert_appointment(
                NewAppointment(
                    doctor_id=doctor.id,
                    patient_id=patient_id,
                    date=day,
                    start=start,
                    end=end,
                    urgency=details.urgency,
                    consultation_type=details.consultation_type,
                    notes=details.notes,
                    room_id=details.room_id,
                    price=doctor.consultation_price,
                )
            )
            unit.log_action(appointment.id, 'appointment_created', {
                'doctor_id': doctor.id,
                'patient_id': patient_id,
                'date': day.isoformat(),
                'start': start.isoformat(timespec='minutes'),
                'end': end.isoformat(timespec='minutes'),
            })
            return appointment

        appointment = self._run(
            [(doctor_id, day)],
            work,
            'reserve',
            doctor_id=doctor_id,
            date=day.isoformat(),
            start=start.isoformat(timespec='minutes'),
        )
        logger.info('Booked appointment %s for doctor %s on %s at %s', appointment.id, doctor_id, day, start)
        self._emit(APPOINTMENT_BOOKED, appointment)
        return appointment

    def confirm(self, appointment_id: int) -> AppointmentRecord:
        appointment = self._transition(appointment_id, AppointmentStatus.CONFIRMED, 'appointment_confirmed')
        self._emit(APPOINTMENT_CONFIRMED, appointment)
        return appointment

    def complete(self, appointment_id: int) -> AppointmentRecord:
        appointment = self._transition(appointment_id, AppointmentStatus.COMPLETED, 'appointment_completed')
        self._emit(APPOINTMENT_COMPLETED, appointment)
        return appointment

    def cancel(self, appointment_id: int, reason: str | None = None) -> AppointmentRecord:
        appointment = self._transition(appointment_id, AppointmentStatus.CANCELLED, 'appointment_cancelled', reason)
        self._emit(APPOINTMENT_CANCELLED, appointment)
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_start: time,
        reason: str | None = None,
    ) -> AppointmentRecord:
        """Release the old interval and book the new one as a single unit.

        If the new slot fails validation nothing is written, so the original
        appointment keeps its status and its interval.
        """
        current = self._require(self._repository, appointment_id)

        def work(unit: BookingUnit) -> AppointmentRecord:
            original = self._require(unit, appointment_id)
            check_transition(original, AppointmentStatus.RESCHEDULED)
            _, end = self._validate_slot(unit, original.doctor_id, new_date, new_start, ignore_appointment_id=original.id)

            unit.update_appointment_status(original.id, AppointmentStatus.RESCHEDULED, cancellation_reason=reason)
            replacement = unit.insert_appointment(
                NewAppointment(
                    doctor_id=original.doctor_id,
                    patient_id=original.patient_id,
                    date=new_date,
                    start=new_start,
                    end=end,
                    urgency=original.urgency,
                    consultation_type=original.consultation_type,
                    notes=original.notes,
                    room_id=original.room_id,
                    price=original.price,
                    rebooked_from_id=original.id,
                )
            )
            unit.log_action(original.id, 'appointment_rescheduled', {
                'previous_date': original.date.isoformat(),
                'previous_start': original.start.isoformat(timespec='minutes'),
                'new_date': new_date.isoformat(),
                'new_start': new_start.isoformat(timespec='minutes'),
                'replacement_id': replacement.id,
                'reason': reason,
            })
            unit.log_action(replacement.id, 'appointment_created', {'rebooked_from_id': original.id})
            return replacement

        replacement = self._run(
            sorted({(current.doctor_id, current.date), (current.doctor_id, new_date)}),
            work,
            'reschedule',
            appointment_id=appointment_id,
            date=new_date.isoformat(),
            start=new_start.isoformat(timespec='minutes'),
        )
        logger.info('Rescheduled appointment %s to %s (%s %s)', appointment_id, replacement.id, new_date, new_start)
        self._emit(APPOINTMENT_RESCHEDULED, replacement, previous_appointment_id=appointment_id)
        return replacement

    def _transition(
        self,
        appointment_id: int,
        target: AppointmentStatus,
        action: str,
        reason: str | None = None,
    ) -> AppointmentRecord:
        current = self._require(self._repository, appointment_id)

        def work(unit: BookingUnit) -> AppointmentRecord:
            live = self._require(unit, appointment_id)
            check_transition(live, target)
            updated = unit.update_appointment_status(appointment_id, target, cancellation_reason=reason)
            unit.log_action(appointment_id, action, {
                'from': live.status.value,
                'to': target.value,
                'reason': reason,
            })
            return updated

        updated = self._run(
            [(current.doctor_id, current.date)],
            work,
            action,
            appointment_id=appointment_id,
            target=target.value,
        )
        logger.info('Appointment %s moved to %s', appointment_id, target.value)
        return updated

    def _validate_slot(
        self,
        unit: BookingUnit,
        doctor_id: int,
        day: date,
        start: time,
        ignore_appointment_id: int | None = None,
    ) -> tuple[DoctorRecord, time]:
        doctor = unit.find_doctor_by_id(doctor_id)
        if doctor is None or not doctor.active:
            raise NotFoundError('Doctor not found or inactive.', doctor_id=doctor_id)

        calendar = SlotCalendar(unit)
        envelope_start, envelope_end = calendar.envelope_for(doctor_id, day)
        end = add_minutes(day, start, doctor.consultation_duration)
        if end is None or not within_envelope(start, end, envelope_start, envelope_end):
            raise EnvelopeError(doctor_id=doctor_id, date=day.isoformat())

        busy = [
            (interval.start, interval.end)
            for interval in calendar.occupied_intervals(doctor_id, day, day)
            if interval.appointment_id != ignore_appointment_id
        ]
        clash = find_overlap(start, end, busy)
        if clash is not None:
            raise ConflictError(
                doctor_id=doctor_id,
                date=day.isoformat(),
                existing_start=clash[0].isoformat(timespec='minutes'),
                existing_end=clash[1].isoformat(timespec='minutes'),
            )
        return doctor, end

    @staticmethod
    def _require_room(reader: SchedulingReader, room_id: int) -> None:
        if all(room.id != room_id for room in reader.find_rooms()):
            raise NotFoundError('Room not found or inactive.', room_id=room_id)

    @staticmethod
    def _require(reader: SchedulingReader, appointment_id: int) -> AppointmentRecord:
        appointment = reader.find_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
        return appointment

    def _run(self, scope, work: Callable[[BookingUnit], T], operation: str, **context) -> T:
        try:
            return self._repository.atomic(scope, work)
        except (ConflictError, EnvelopeError) as exc:
            logger.info('%s rejected: %s %s', operation, exc.message, context)
            raise
        except InvalidTransitionError as exc:
            logger.warning('%s refused: %s %s', operation, exc.message, {**context, **exc.context})
            raise

    def _emit(self, event_type: str, appointment: AppointmentRecord, previous_appointment_id: int | None = None) -> None:
        event = build_event(event_type, appointment, previous_appointment_id)
        try:
            self._event_sink.emit(event)
        except Exception:
            logger.exception('Failed to publish %s for appointment %s', event_type, appointment.id)
