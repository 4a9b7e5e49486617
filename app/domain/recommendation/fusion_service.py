"""
Domain service: Ensemble fusion of normalized signals.

Pure business logic. No framework imports. No IO. No side effects.

Two weighting layers:
    1. Per timeframe, a weighted directional vote over the sources that
       responded, using the current weight snapshot renormalized over
       those responders only (missing sources are excluded, never
       counted as zero).
    2. Across timeframes, configurable conviction weights (longer
       timeframes weigh more) for the directional magnitude, and
       urgency weights (shorter timeframes weigh more) for WATCH-level
       urgency.

Inputs are sorted and summed with ``math.fsum`` so the magnitude is
bit-identical for the same set of signals regardless of arrival order.
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Direction,
    FusedScore,
    Signal,
    Timeframe,
    WeightedSignal,
    WeightSnapshot,
)

logger = logging.getLogger(__name__)

_TIMEFRAME_ORDER = {tf: i for i, tf in enumerate(Timeframe)}


def signal_sort_key(signal: Signal) -> tuple[int, str, str]:
    """Canonical ordering of signals: timeframe, then source, then kind."""
    return (_TIMEFRAME_ORDER[signal.timeframe], signal.source, signal.kind.value)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class EnsembleFusionEngine:
    """Combines per-source, per-timeframe signals into one fused score."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def fuse(
        self,
        symbol: str,
        signals: Sequence[Signal],
        snapshot: WeightSnapshot,
    ) -> FusedScore:
        """Fuse a (possibly partial) set of signals.

        Risk-override signals are carried in ``contributing_signals`` but
        never vote; they are handled by the conflict resolver.

        Args:
            symbol: Ticker symbol being evaluated.
            signals: Signals that arrived before the deadline.
            snapshot: Weight snapshot read at the start of the evaluation.

        Returns:
            FusedScore with magnitude in [-1, 1] and no conflicts attached.
        """
        ordered = tuple(sorted(signals, key=signal_sort_key))
        voting = [s for s in ordered if not self._config.is_risk_override(s.source)]

        if not voting:
            return FusedScore(
                symbol=symbol,
                direction=Direction.HOLD,
                magnitude=0.0,
                contributing_signals=ordered,
            )

        by_timeframe: dict[Timeframe, list[Signal]] = {}
        for signal in voting:
            by_timeframe.setdefault(signal.timeframe, []).append(signal)

        timeframes = sorted(by_timeframe, key=_TIMEFRAME_ORDER.__getitem__)
        conviction = self.timeframe_weights(
            timeframes, self._config.timeframe_conviction_weights
        )
        urgency_weights = self.timeframe_weights(
            timeframes, self._config.timeframe_urgency_weights
        )

        weighted: list[WeightedSignal] = []
        timeframe_scores: list[tuple[Timeframe, float]] = []
        for timeframe in timeframes:
            group = by_timeframe[timeframe]
            source_weights = self.renormalize(group, snapshot)
            score = math.fsum(
                source_weights[s.source] * s.signed_strength for s in group
            )
            timeframe_scores.append((timeframe, score))
            for s in group:
                weight = source_weights[s.source] * conviction[timeframe]
                weighted.append(
                    WeightedSignal(
                        signal=s,
                        weight=weight,
                        contribution=weight * s.signed_strength,
                    )
                )

        magnitude = clamp(
            math.fsum(conviction[tf] * score for tf, score in timeframe_scores),
            -1.0,
            1.0,
        )
        urgency = clamp(
            abs(math.fsum(urgency_weights[tf] * score for tf, score in timeframe_scores)),
            0.0,
            1.0,
        )

        if abs(magnitude) < self._config.hold_epsilon:
            direction = Direction.HOLD
        else:
            direction = Direction.from_sign(magnitude)

        logger.debug(
            "Fused %d signals for %s: magnitude=%.4f direction=%s urgency=%.3f",
            len(voting),
            symbol,
            magnitude,
            direction.value,
            urgency,
        )

        return FusedScore(
            symbol=symbol,
            direction=direction,
            magnitude=magnitude,
            contributing_signals=ordered,
            weighted_signals=tuple(weighted),
            timeframe_scores=tuple(timeframe_scores),
            urgency=urgency,
        )

    @staticmethod
    def renormalize(
        group: Iterable[Signal], snapshot: WeightSnapshot
    ) -> dict[str, float]:
        """Renormalize snapshot weights over the sources that responded.

        Falls back to equal weights when every responder has zero weight.
        """
        sources = sorted({s.source for s in group})
        raw = {source: max(snapshot.weight_for(source), 0.0) for source in sources}
        total = math.fsum(raw.values())
        if total <= 0.0:
            return {source: 1.0 / len(sources) for source in sources}
        return {source: raw[source] / total for source in sources}

    @staticmethod
    def timeframe_weights(
        timeframes: Sequence[Timeframe], configured: Mapping[Timeframe, float]
    ) -> dict[Timeframe, float]:
        """Normalize configured timeframe weights over the timeframes present."""
        raw = {tf: max(configured.get(tf, 1.0), 0.0) for tf in timeframes}
        total = math.fsum(raw.values())
        if total <= 0.0:
            return {tf: 1.0 / len(timeframes) for tf in timeframes}
        return {tf: raw[tf] / total for tf in timeframes}
