"""
Use case: Record a realized outcome for a published recommendation.

Input: RecordOutcomeCommand (recommendation_id, price, observed_at, state)
Output: RecordOutcomeResult
Side effects: May publish a new weight snapshot; persists the
    performance samples of a terminal transition. A recommendation whose
    samples are already stored is reported with its recorded state and is
    never scored twice.
Failure cases: RecommendationNotFoundError.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from app.application.recommendation.dtos import (
    RecordOutcomeCommand,
    RecordOutcomeResult,
    sample_result,
)
from app.domain.recommendation.entities import OutcomeEvent, OutcomeState
from app.domain.recommendation.errors import RecommendationNotFoundError
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker
from app.domain.recommendation.ports import RecommendationRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordOutcomeUseCase:
    """Feeds outcome events into the performance feedback loop."""

    def __init__(
        self,
        tracker: PerformanceFeedbackTracker,
        repository: RecommendationRepository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tracker = tracker
        self._repository = repository
        self._clock = clock

    def execute(self, command: RecordOutcomeCommand) -> RecordOutcomeResult:
        """Run the record-outcome use case.

        Raises:
            RecommendationNotFoundError: If the recommendation is unknown
                or carries nothing that can be scored.
        """
        recommendation = self._repository.get(command.recommendation_id)
        if recommendation is None:
            raise RecommendationNotFoundError(str(command.recommendation_id))

        recorded = self._repository.list_samples(command.recommendation_id)
        if recorded:
            # Already resolved, possibly by an earlier process over the same store.
            state = next(
                (s.outcome_state for s in recorded if s.outcome_state is not None),
                OutcomeState.EXPIRED,
            )
            self._tracker.mark_resolved(command.recommendation_id, state)
            logger.debug(
                "Outcome for %s already recorded as %s", command.recommendation_id, state.value
            )
            return RecordOutcomeResult(
                recommendation_id=command.recommendation_id,
                state=state.value,
                samples=[],
                snapshot_version=self._tracker.snapshot.version,
            )

        # Recommendations persisted before a restart are re-attached lazily.
        if not self._tracker.track(recommendation):
            raise RecommendationNotFoundError(str(command.recommendation_id))

        event = OutcomeEvent(
            price=command.price,
            observed_at=command.observed_at or self._clock(),
            state=OutcomeState(command.state) if command.state else None,
        )
        outcome = self._tracker.record_outcome(command.recommendation_id, event)
        if outcome.samples:
            self._repository.save_samples(list(outcome.samples))

        return RecordOutcomeResult(
            recommendation_id=outcome.recommendation_id,
            state=outcome.state.value,
            samples=[sample_result(s) for s in outcome.samples],
            snapshot_version=outcome.snapshot_version,
        )
