"""Weighted-sum ranking of free slots for appointment suggestions.

The score keeps the clinic's historical formula:

    0.3 * urgency/5 + 0.2 * doctor_preference + 0.1 * proximity
        + 0.2 * availability + 0.2 * specialty_match

Proximity is a fixed placeholder rather than a real distance in time; every
constant lives in `RankingWeights` so the approximation stays visible.
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace

from clinic_scheduler.core import config
from clinic_scheduler.scheduling.types import SlotCandidate, SuggestionCriteria

HIGH_URGENCY_THRESHOLD = 0.8


@dataclass(frozen=True)
class RankingWeights:
    urgency: float = config.RANK_WEIGHT_URGENCY
    doctor_preference: float = config.RANK_WEIGHT_DOCTOR_PREFERENCE
    proximity: float = config.RANK_WEIGHT_PROXIMITY
    availability: float = config.RANK_WEIGHT_AVAILABILITY
    specialty_match: float = config.RANK_WEIGHT_SPECIALTY
    proximity_placeholder: float = config.RANK_PROXIMITY_PLACEHOLDER
    preference_fallback: float = config.RANK_PREFERENCE_FALLBACK
    specialty_fallback: float = config.RANK_SPECIALTY_FALLBACK
    max_urgency: int = config.MAX_URGENCY


@dataclass(frozen=True)
class ScoreComponents:
    urgency: float
    doctor_preference: float
    proximity: float
    availability: float
    specialty_match: float


class Ranker:
    def __init__(self, weights: RankingWeights | None = None) -> None:
        self.weights = weights or RankingWeights()

    def components(self, candidate: SlotCandidate, criteria: SuggestionCriteria) -> ScoreComponents:
        weights = self.weights
        is_preferred = criteria.preferred_doctor_id is not None and candidate.doctor.id == criteria.preferred_doctor_id
        requested = (criteria.requested_specialty or '').strip().casefold()
        is_specialty_match = bool(requested) and candidate.doctor.specialty.strip().casefold() == requested

        return ScoreComponents(
            urgency=criteria.urgency / weights.max_urgency,
            doctor_preference=1.0 if is_preferred else weights.preference_fallback,
            proximity=weights.proximity_placeholder,
            # Candidates reaching the ranker were already filtered to free slots.
            availability=1.0,
            specialty_match=1.0 if is_specialty_match else weights.specialty_fallback,
        )

    def score(self, components: ScoreComponents) -> float:
        weights = self.weights
        total = (
            weights.urgency * components.urgency
            + weights.doctor_preference * components.doctor_preference
            + weights.proximity * components.proximity
            + weights.availability * components.availability
            + weights.specialty_match * components.specialty_match
        )
        return round(total, 6)

    @staticmethod
    def reason(components: ScoreComponents) -> str:
        reasons = []
        if components.urgency >= HIGH_URGENCY_THRESHOLD:
            reasons.append('High urgency')
        if components.doctor_preference == 1.0:
            reasons.append('Preferred doctor')
        if components.specialty_match == 1.0:
            reasons.append('Specialty match')
        if components.availability == 1.0:
            reasons.append('Slot available')
        return ', '.join(reasons) if reasons else 'Slot available'

    def rank(
        self,
        candidates: Iterable[SlotCandidate],
        criteria: SuggestionCriteria,
        limit: int | None = config.SUGGESTION_LIMIT,
    ) -> list[SlotCandidate]:
        scored = []
        for candidate in candidates:
            components = self.components(candidate, criteria)
            scored.append(replace(candidate, score=self.score(components), reason=self.reason(components)))

        scored.sort(key=lambda candidate: (-candidate.score, candidate.date, candidate.start, candidate.doctor.id))
        if limit is None:
            return scored
        return scored[:limit]
