"""
Domain service: Uncertainty quantification.

Pure business logic. No framework imports. No IO. No side effects.

    aleatoric  = weighted mean of (1 - confidence_i)
    epistemic  = weighted variance of strength_i × sign(direction_i)
    confidence = 1 - clamp(aleatoric + epistemic, 0, 1)

then discounted by the unresolved-conflict penalty and capped at the
single-source ceiling when only one voting source responded.
"""

from dataclasses import dataclass

import numpy as np

from app.domain.recommendation.conflict_resolver import ResolvedScore
from app.domain.recommendation.engine_config import EngineConfig


@dataclass(frozen=True)
class UncertaintyEstimate:
    """Uncertainty terms and the derived overall confidence."""

    aleatoric: float
    epistemic: float
    confidence: float
    single_source: bool = False
    penalized: bool = False


class UncertaintyQuantifier:
    """Derives a calibrated confidence from source agreement and self-reported confidence."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def quantify(self, resolved: ResolvedScore) -> UncertaintyEstimate:
        """Compute aleatoric and epistemic uncertainty for a resolved score."""
        weighted = resolved.fused.weighted_signals
        if not weighted:
            return UncertaintyEstimate(aleatoric=1.0, epistemic=0.0, confidence=0.0)

        weights = np.array(
            [
                ws.weight * (
                    self._config.dissent_discount
                    if ws.signal.source in resolved.discounted_sources
                    else 1.0
                )
                for ws in weighted
            ],
            dtype=float,
        )
        if weights.sum() <= 0.0:
            weights = np.ones(len(weighted), dtype=float)

        values = np.array([ws.signal.signed_strength for ws in weighted], dtype=float)
        doubt = np.array([1.0 - ws.signal.confidence for ws in weighted], dtype=float)

        aleatoric = float(np.average(doubt, weights=weights))
        mean = np.average(values, weights=weights)
        epistemic = float(np.average((values - mean) ** 2, weights=weights))

        single_source = len({ws.signal.source for ws in weighted}) == 1
        confidence = self.confidence_from(
            aleatoric,
            epistemic,
            unresolved=resolved.unresolved,
            single_source=single_source,
        )
        return UncertaintyEstimate(
            aleatoric=aleatoric,
            epistemic=epistemic,
            confidence=confidence,
            single_source=single_source,
            penalized=resolved.unresolved,
        )

    def confidence_from(
        self,
        aleatoric: float,
        epistemic: float,
        unresolved: bool = False,
        single_source: bool = False,
    ) -> float:
        """Map the two uncertainty terms onto a confidence in [0, 1].

        Non-increasing in both ``aleatoric`` and ``epistemic``.
        """
        confidence = 1.0 - float(np.clip(aleatoric + epistemic, 0.0, 1.0))
        if unresolved:
            confidence *= 1.0 - self._config.unresolved_conflict_penalty
        if single_source:
            confidence = min(confidence, self._config.single_source_confidence_ceiling)
        return confidence
