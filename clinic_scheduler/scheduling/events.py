"""Domain events emitted after every committed appointment transition.

The notification collaborator consumes these; the engine never sends
messages itself.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Protocol

logger = logging.getLogger(__name__)

APPOINTMENT_BOOKED = 'appointment-booked'
APPOINTMENT_CONFIRMED = 'appointment-confirmed'
APPOINTMENT_COMPLETED = 'appointment-completed'
APPOINTMENT_CANCELLED = 'appointment-cancelled'
APPOINTMENT_RESCHEDULED = 'appointment-rescheduled'


@dataclass(frozen=True)
class AppointmentEvent:
    event_type: str
    appointment_id: int
    doctor_id: int
    patient_id: int
    timestamp: datetime
    previous_appointment_id: int | None = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload['timestamp'] = self.timestamp.isoformat()
        return payload


def build_event(event_type: str, appointment, previous_appointment_id: int | None = None) -> AppointmentEvent:
    return AppointmentEvent(
        event_type=event_type,
        appointment_id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        timestamp=datetime.now(timezone.utc),
        previous_appointment_id=previous_appointment_id,
    )


class EventSink(Protocol):
    def emit(self, event: AppointmentEvent) -> None:
        ...


class LoggingEventSink:
    def emit(self, event: AppointmentEvent) -> None:
        logger.info('Appointment event %s', event.to_dict())


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: list[AppointmentEvent] = []
        self._lock = Lock()

    def emit(self, event: AppointmentEvent) -> None:
        with self._lock:
            self.events.append(event)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]
