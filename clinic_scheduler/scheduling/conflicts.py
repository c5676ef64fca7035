"""Half-open interval checks used for overlap detection.

Two intervals [a, b) and [c, d) overlap iff a < d and c < b, so back-to-back
bookings (09:00-09:30 then 09:30-10:00) never collide.
"""

from collections.abc import Iterable
from datetime import time


Interval = tuple[time, time]


def find_overlap(candidate_start: time, candidate_end: time, existing: Iterable[Interval]) -> Interval | None:
    for existing_start, existing_end in existing:
        if candidate_start < existing_end and existing_start < candidate_end:
            return existing_start, existing_end
    return None


def overlaps(candidate_start: time, candidate_end: time, existing: Iterable[Interval]) -> bool:
    return find_overlap(candidate_start, candidate_end, existing) is not None


def within_envelope(candidate_start: time, candidate_end: time, envelope_start: time, envelope_end: time) -> bool:
    if candidate_start >= candidate_end:
        return False
    return envelope_start <= candidate_start and candidate_end <= envelope_end


def is_bookable(candidate_start: time, candidate_end: time, envelope: Interval, existing: Iterable[Interval]) -> bool:
    """A candidate is bookable iff it fits the envelope and collides with nothing."""
    envelope_start, envelope_end = envelope
    if not within_envelope(candidate_start, candidate_end, envelope_start, envelope_end):
        return False
    return not overlaps(candidate_start, candidate_end, existing)
