import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta

from clinic_scheduler.core import config
from clinic_scheduler.scheduling.calendar import SlotCalendar
from clinic_scheduler.scheduling.errors import InvalidQuery, NoDoctorsForSpecialty, NoDoctorsFound, NotFoundError
from clinic_scheduler.scheduling.events import EventSink
from clinic_scheduler.scheduling.finder import SlotFinder
from clinic_scheduler.scheduling.ledger import BookingLedger
from clinic_scheduler.scheduling.ranker import Ranker
from clinic_scheduler.scheduling.repository import SchedulingRepository
from clinic_scheduler.scheduling.types import (
    AppointmentRecord,
    BookingDetails,
    DaySlots,
    RoomRecord,
    SlotCandidate,
    SuggestionCriteria,
)

logger = logging.getLogger(__name__)


def _validate_urgency(urgency: int) -> int:
    if not config.MIN_URGENCY <= urgency <= config.MAX_URGENCY:
        raise InvalidQuery(
            f'Urgency must be between {config.MIN_URGENCY} and {config.MAX_URGENCY}.',
            urgency=urgency,
        )
    return urgency


def _require_local_time(value: time) -> time:
    if value.tzinfo is not None:
        raise InvalidQuery('Times must be clinic-local without a UTC offset.', time=value.isoformat())
    return value


class SchedulingService:
    """Entry point used by the HTTP layer: suggest, search and book.

    Suggestions and searches read without locks and are advisory; only the
    ledger decides whether a slot can actually be taken.
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        event_sink: EventSink | None = None,
        ranker: Ranker | None = None,
        clock: Callable[[], datetime] = datetime.now,
        suggestion_window_days: int = config.SUGGESTION_WINDOW_DAYS,
        suggestion_limit: int = config.SUGGESTION_LIMIT,
    ) -> None:
        self.repository = repository
        self.calendar = SlotCalendar(repository)
        self.finder = SlotFinder(self.calendar)
        self.ranker = ranker or Ranker()
        self.ledger = BookingLedger(repository, event_sink)
        self._clock = clock
        self._suggestion_window_days = suggestion_window_days
        self._suggestion_limit = suggestion_limit

    def suggest(
        self,
        specialty: str,
        consultation_type: str | None = None,
        urgency: int = config.DEFAULT_URGENCY,
        preferred_doctor_id: int | None = None,
        preferred_date: date | None = None,
    ) -> list[SlotCandidate]:
        """Rank free slots; `consultation_type` is logged only and does not filter slots."""
        if not specialty or not specialty.strip():
            raise InvalidQuery('Specialty is required.')
        _validate_urgency(urgency)

        doctors = self.repository.find_doctors_by_specialty(specialty)
        if not doctors:
            raise NoDoctorsForSpecialty(specialty=specialty)

        now = self._clock()
        date_from = preferred_date or now.date()
        date_to = date_from + timedelta(days=self._suggestion_window_days)
        candidates = self.finder.free_slots(doctors, date_from, date_to, not_before=now)

        criteria = SuggestionCriteria(
            urgency=urgency,
            preferred_doctor_id=preferred_doctor_id,
            requested_specialty=specialty,
        )
        ranked = self.ranker.rank(candidates, criteria, limit=self._suggestion_limit)
        logger.debug(
            'Suggested %d slots for specialty=%s type=%s across %d doctors',
            len(ranked),
            specialty,
            consultation_type,
            len(doctors),
        )
        return ranked

    def search(
        self,
        date_from: date,
        date_to: date,
        doctor_id: int | None = None,
        specialty: str | None = None,
        consultation_type: str | None = None,
        limit: int | None = None,
    ) -> list[DaySlots]:
        """Free slots grouped by day; `consultation_type` does not filter slots."""
        if doctor_id is None and not (specialty and specialty.strip()):
            raise InvalidQuery('Doctor or specialty must be provided.')
        if date_to < date_from:
            raise InvalidQuery('date_to must not be before date_from.')
        if limit is not None and limit < 1:
            raise InvalidQuery('limit must be positive.')

        if doctor_id is not None:
            doctor = self.repository.find_doctor_by_id(doctor_id)
            doctors = [doctor] if doctor is not None and doctor.active else []
        else:
            doctors = self.repository.find_doctors_by_specialty(specialty)

        if not doctors:
            raise NoDoctorsFound(doctor_id=doctor_id, specialty=specialty)

        slots = self.finder.free_slots(doctors, date_from, date_to, not_before=self._clock()).take(limit)

        grouped: list[DaySlots] = []
        for slot in slots:
            if not grouped or grouped[-1].date != slot.date:
                grouped.append(DaySlots(date=slot.date))
            grouped[-1].slots.append(slot)

        logger.debug('Search type=%s returned %d slots over %d days', consultation_type, len(slots), len(grouped))
        return grouped

    def book(
        self,
        doctor_id: int,
        patient_id: int,
        day: date,
        start: time,
        consultation_type: str | None = None,
        urgency: int = config.DEFAULT_URGENCY,
        notes: str | None = None,
        room_id: int | None = None,
    ) -> AppointmentRecord:
        """Reserve a slot; the ledger derives the end time and stamps the doctor's price."""
        _validate_urgency(urgency)
        _require_local_time(start)
        if datetime.combine(day, start) <= self._clock():
            raise InvalidQuery('Appointments must be scheduled in the future.')

        details = BookingDetails(
            urgency=urgency,
            consultation_type=consultation_type,
            notes=notes,
            room_id=room_id,
        )
        return self.ledger.reserve(doctor_id, patient_id, day, start, details)

    def get_appointment(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.repository.find_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
        return appointment

    def confirm(self, appointment_id: int) -> AppointmentRecord:
        return self.ledger.confirm(appointment_id)

    def complete(self, appointment_id: int) -> AppointmentRecord:
        return self.ledger.complete(appointment_id)

    def cancel(self, appointment_id: int, reason: str | None = None) -> AppointmentRecord:
        return self.ledger.cancel(appointment_id, reason)

    def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_start: time,
        reason: str | None = None,
    ) -> AppointmentRecord:
        _require_local_time(new_start)
        if datetime.combine(new_date, new_start) <= self._clock():
            raise InvalidQuery('Appointments must be scheduled in the future.')
        return self.ledger.reschedule(appointment_id, new_date, new_start, reason)

    def available_rooms(self, day: date, start: time, end: time) -> list[RoomRecord]:
        _require_local_time(start)
        _require_local_time(end)
        if end <= start:
            raise InvalidQuery('end must be after start.')
        busy = self.repository.find_busy_room_ids(day, start, end)
        return [room for room in self.repository.find_rooms() if room.id not in busy]
