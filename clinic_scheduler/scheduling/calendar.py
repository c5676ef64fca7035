from datetime import date, datetime, time, timedelta

from clinic_scheduler.scheduling.errors import NoEnvelopeConfigured
from clinic_scheduler.scheduling.repository import SchedulingReader
from clinic_scheduler.scheduling.types import OccupiedInterval, WorkingHoursRecord


def weekday_index(day: date) -> int:
    """Weekday numbered 0 (Sunday) to 6 (Saturday), as stored in working_hours."""
    return (day.weekday() + 1) % 7


def add_minutes(day: date, start: time, minutes: int) -> time | None:
    """Return start + minutes on the same day, or None when it crosses midnight."""
    end = datetime.combine(day, start) + timedelta(minutes=minutes)
    if end.date() != day:
        return None
    return end.time()


def iterate_days(date_from: date, date_to: date):
    current_day = date_from
    while current_day <= date_to:
        yield current_day
        current_day += timedelta(days=1)


class SlotCalendar:
    """Per-doctor view of working envelopes and occupied intervals."""

    def __init__(self, reader: SchedulingReader) -> None:
        self._reader = reader

    def occupied_intervals(self, doctor_id: int, date_from: date, date_to: date) -> list[OccupiedInterval]:
        intervals = self._reader.find_occupied_intervals(doctor_id, date_from, date_to)
        return sorted(intervals, key=lambda interval: (interval.date, interval.start))

    def working_hours(self, doctor_id: int, weekday: int) -> WorkingHoursRecord:
        working_hours = self._reader.find_working_hours(doctor_id, weekday)
        if working_hours is None or not working_hours.active:
            raise NoEnvelopeConfigured(doctor_id=doctor_id, weekday=weekday)
        return working_hours

    def working_envelope(self, doctor_id: int, weekday: int) -> tuple[time, time]:
        working_hours = self.working_hours(doctor_id, weekday)
        return working_hours.start, working_hours.end

    def envelope_for(self, doctor_id: int, day: date) -> tuple[time, time]:
        return self.working_envelope(doctor_id, weekday_index(day))
