"""
Use cases: Ensemble weights and ensemble health.

Output: WeightSnapshotResult / EnsembleStatusResult
Side effects: None.
"""

import math

import numpy as np

from app.application.recommendation.dtos import (
    EnsembleStatusResult,
    SourceHealthResult,
    WeightSnapshotResult,
    snapshot_result,
)
from app.application.recommendation.signal_collector import SignalCollector
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker


def weight_entropy(weights: list[float]) -> float:
    """Shannon entropy (nats) of a weight distribution; 0 for one source."""
    arr = np.asarray([w for w in weights if w > 0], dtype=float)
    if arr.size == 0:
        return 0.0
    arr = arr / arr.sum()
    return float(-(arr * np.log(arr)).sum())


class GetEnsembleWeightsUseCase:
    """Returns the current weight snapshot."""

    def __init__(self, tracker: PerformanceFeedbackTracker) -> None:
        self._tracker = tracker

    def execute(self) -> WeightSnapshotResult:
        return snapshot_result(self._tracker.snapshot)


class GetEnsembleStatusUseCase:
    """Summarizes source health and how evenly weight is spread."""

    def __init__(
        self,
        tracker: PerformanceFeedbackTracker,
        collector: SignalCollector,
    ) -> None:
        self._tracker = tracker
        self._collector = collector

    def execute(self) -> EnsembleStatusResult:
        snapshot = self._tracker.snapshot
        weights = snapshot_result(snapshot).weights
        return EnsembleStatusResult(
            snapshot_version=snapshot.version,
            weight_entropy=weight_entropy([w.weight for w in weights]),
            max_weight_entropy=math.log(len(weights)) if weights else 0.0,
            open_recommendations=len(self._tracker.open_recommendations()),
            sources=[
                SourceHealthResult(
                    source=s.source,
                    kind=s.kind,
                    calls=s.calls,
                    successes=s.successes,
                    timeouts=s.timeouts,
                    errors=s.errors,
                    mean_latency_ms=s.mean_latency_ms,
                    last_error=s.last_error,
                )
                for s in self._collector.health()
            ],
            weights=weights,
        )
