import heapq
from collections import defaultdict
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time

from clinic_scheduler.scheduling.calendar import SlotCalendar, add_minutes, iterate_days, weekday_index
from clinic_scheduler.scheduling.conflicts import overlaps
from clinic_scheduler.scheduling.errors import NoEnvelopeConfigured
from clinic_scheduler.scheduling.types import DoctorRecord, SlotCandidate, WorkingHoursRecord


class SlotSequence:
    """Finite, restartable sequence of free slots.

    Nothing is read from the store until iteration starts, and each call to
    `iter()` walks the calendar again, so callers can stop early (for a capped
    search) or re-run the same query.
    """

    def __init__(
        self,
        finder: 'SlotFinder',
        doctors: Iterable[DoctorRecord],
        date_from: date,
        date_to: date,
        not_before: datetime | None = None,
    ) -> None:
        self._finder = finder
        self._doctors = list(doctors)
        self._date_from = date_from
        self._date_to = date_to
        self._not_before = not_before

    def __iter__(self) -> Iterator[SlotCandidate]:
        streams = [
            self._finder.doctor_slots(doctor, self._date_from, self._date_to, self._not_before)
            for doctor in self._doctors
        ]
        return heapq.merge(*streams, key=lambda candidate: candidate.sort_key)

    def take(self, limit: int | None) -> list[SlotCandidate]:
        slots: list[SlotCandidate] = []
        for candidate in self:
            if limit is not None and len(slots) >= limit:
                break
            slots.append(candidate)
        return slots


class SlotFinder:
    def __init__(self, calendar: SlotCalendar) -> None:
        self._calendar = calendar

    def free_slots(
        self,
        doctors: Iterable[DoctorRecord],
        date_from: date,
        date_to: date,
        not_before: datetime | None = None,
    ) -> SlotSequence:
        return SlotSequence(self, doctors, date_from, date_to, not_before)

    def doctor_slots(
        self,
        doctor: DoctorRecord,
        date_from: date,
        date_to: date,
        not_before: datetime | None = None,
    ) -> Iterator[SlotCandidate]:
        """Yield one doctor's free slots in (date, start) order."""
        duration = doctor.consultation_duration
        if duration <= 0 or date_to < date_from:
            return
        step = max(doctor.slot_step_minutes, duration)

        occupied_by_day: dict[date, list[tuple[time, time]]] = defaultdict(list)
        for interval in self._calendar.occupied_intervals(doctor.id, date_from, date_to):
            occupied_by_day[interval.date].append((interval.start, interval.end))

        windows: dict[int, WorkingHoursRecord | None] = {}

        for current_day in iterate_days(date_from, date_to):
            weekday = weekday_index(current_day)
            if weekday not in windows:
                try:
                    windows[weekday] = self._calendar.working_hours(doctor.id, weekday)
                except NoEnvelopeConfigured:
                    windows[weekday] = None
            window = windows[weekday]
            if window is None:
                continue

            envelope_start, envelope_end = window.start, window.end
            busy = occupied_by_day.get(current_day, [])
            slot_start = envelope_start

            while True:
                slot_end = add_minutes(current_day, slot_start, duration)
                if slot_end is None or slot_end > envelope_end:
                    break

                is_future = not_before is None or datetime.combine(current_day, slot_start) >= not_before
                if is_future and not overlaps(slot_start, slot_end, busy):
                    yield SlotCandidate(
                        doctor=doctor,
                        date=current_day,
                        start=slot_start,
                        end=slot_end,
                        price=doctor.consultation_price,
                        room_id=window.room_id,
                    )

                next_start = add_minutes(current_day, slot_start, step)
                if next_start is None:
                    break
                slot_start = next_start
