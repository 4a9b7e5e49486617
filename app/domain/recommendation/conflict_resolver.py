"""
Domain service: Conflict detection and deterministic resolution.

Pure business logic. No framework imports. No IO. No side effects.

Detects:
    - OPPOSING_DIRECTION: two sources disagree on the same timeframe,
      both with strength above the configured threshold.
    - TIMEFRAME_DIVERGENCE: shortest and longest timeframe scores
      disagree in sign.
    - LOW_CONSENSUS: fewer than ``min_consensus`` of the active sources
      agree with the majority direction.

Resolution policy, applied in order:
    1. A fired risk-override source vetoes any BUY.
    2. Consensus >= ``strong_consensus``: accept the majority, discount
       dissenting sources in the confidence computation only.
    3. ``min_consensus`` <= consensus < ``strong_consensus``: accept the
       majority, mark the result non-aggressive (sizing is capped).
    4. Otherwise fall back to HOLD as an unresolved conflict.

Every detected conflict produces a ConflictRecord carrying the
resolution that was applied.
"""

import logging
from collections import Counter
from dataclasses import dataclass, replace
from itertools import combinations
from typing import Optional

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    ConflictKind,
    ConflictRecord,
    ConflictResolution,
    Direction,
    FusedScore,
    Signal,
    SourceId,
    Timeframe,
    WeightedSignal,
)

logger = logging.getLogger(__name__)

# Tie-break preference among equally supported directions: least aggressive first.
_TIE_PREFERENCE = {Direction.HOLD: 2, Direction.SELL: 1, Direction.BUY: 0}


@dataclass(frozen=True)
class ResolvedScore:
    """Fused score after conflict resolution.

    Attributes:
        fused: The fused score with conflict records attached.
        direction: Final direction after policy (may differ from fused).
        consensus: Fraction of active sources agreeing with the majority.
        majority: Majority direction among active sources.
        source_directions: Net direction per active voting source.
        resolution: Policy outcome that was applied.
        aggressive: False when sizing must be capped (moderate consensus).
        vetoed: True when a risk override vetoed a BUY.
        unresolved: True when the conflict could not be resolved.
        discounted_sources: Dissenting sources discounted in confidence.
        notes: Reasoning entries describing the resolution.
    """

    fused: FusedScore
    direction: Direction
    consensus: float
    majority: Direction
    source_directions: tuple[tuple[SourceId, Direction], ...]
    resolution: ConflictResolution
    aggressive: bool = True
    vetoed: bool = False
    unresolved: bool = False
    discounted_sources: frozenset[SourceId] = frozenset()
    notes: tuple[str, ...] = ()

    @property
    def active_sources(self) -> int:
        return len(self.source_directions)

    def dissenting_sources(self) -> tuple[SourceId, ...]:
        return tuple(
            source for source, direction in self.source_directions
            if direction is not self.majority
        )


class ConflictResolver:
    """Detects source/timeframe disagreement and applies the resolution policy."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def resolve(self, fused: FusedScore) -> ResolvedScore:
        """Resolve conflicts in a fused score.

        Args:
            fused: Output of the ensemble fusion step.

        Returns:
            ResolvedScore with the final direction and conflict records.
        """
        source_directions = self._source_directions(fused)
        active = len(source_directions)
        if active == 0:
            return ResolvedScore(
                fused=fused,
                direction=Direction.HOLD,
                consensus=0.0,
                majority=Direction.HOLD,
                source_directions=(),
                resolution=ConflictResolution.UNRESOLVED,
                unresolved=True,
            )

        counts = Counter(direction for _, direction in source_directions)
        majority = max(
            counts,
            key=lambda d: (counts[d], d is fused.direction, _TIE_PREFERENCE[d]),
        )
        consensus = counts[majority] / active
        dissenters = [s for s, d in source_directions if d is not majority]

        notes: list[str] = []
        aggressive = True
        unresolved = False
        discounted: frozenset[SourceId] = frozenset()

        if consensus < self._config.min_consensus:
            resolution = ConflictResolution.UNRESOLVED
            direction = Direction.HOLD
            unresolved = True
            notes.append(
                f"unresolved conflict: only {consensus:.0%} of {active} sources agree "
                f"(minimum {self._config.min_consensus:.0%}); falling back to HOLD"
            )
        elif fused.direction is Direction.HOLD:
            resolution = self._band(consensus)
            direction = Direction.HOLD
            notes.append(
                f"weighted score {fused.magnitude:+.3f} inside hold band "
                f"±{self._config.hold_epsilon:.2f}"
            )
        elif majority is not fused.direction:
            resolution = ConflictResolution.UNRESOLVED
            direction = Direction.HOLD
            unresolved = True
            notes.append(
                f"unresolved conflict: majority {majority.value} ({consensus:.0%}) "
                f"contradicts weighted score {fused.magnitude:+.3f}; falling back to HOLD"
            )
        elif consensus >= self._config.strong_consensus:
            resolution = ConflictResolution.DISCOUNTED
            direction = majority
            discounted = frozenset(dissenters)
            if dissenters:
                notes.append(
                    f"strong consensus ({consensus:.0%} {majority.value}): dissent from "
                    f"{', '.join(dissenters)} discounted in confidence"
                )
        else:
            resolution = ConflictResolution.ACCEPTED_MAJORITY
            direction = majority
            aggressive = False
            notes.append(
                f"moderate consensus ({consensus:.0%} {majority.value}): sizing capped "
                f"to non-aggressive; dissent from {', '.join(dissenters)}"
            )

        override = self._fired_override(fused.contributing_signals)
        vetoed = False
        if direction is Direction.BUY and override is not None:
            resolution = ConflictResolution.VETOED
            direction = Direction.HOLD
            vetoed = True
            aggressive = True
            notes.insert(
                0,
                f"BUY vetoed by risk override {override.source} "
                f"({override.direction.value}, strength {override.strength:.2f})"
                + (f": {override.explanation}" if override.explanation else ""),
            )

        conflicts = self._detect(fused, majority, consensus, resolution)
        if vetoed and override is not None:
            conflicts.append(
                ConflictRecord(
                    kind=ConflictKind.OPPOSING_DIRECTION,
                    resolution=ConflictResolution.VETOED,
                    signal_a=override,
                    signal_b=self._strongest(fused.weighted_signals, Direction.BUY),
                    detail=f"risk override {override.source} vetoed BUY",
                )
            )

        for record in conflicts:
            logger.info(
                "Conflict on %s: %s -> %s (%s)",
                fused.symbol,
                record.kind.value,
                record.resolution.value,
                record.detail,
            )

        return ResolvedScore(
            fused=replace(fused, conflicts=tuple(conflicts)),
            direction=direction,
            consensus=consensus,
            majority=majority,
            source_directions=source_directions,
            resolution=resolution,
            aggressive=aggressive,
            vetoed=vetoed,
            unresolved=unresolved,
            discounted_sources=discounted,
            notes=tuple(notes),
        )

    def _band(self, consensus: float) -> ConflictResolution:
        if consensus >= self._config.strong_consensus:
            return ConflictResolution.DISCOUNTED
        return ConflictResolution.ACCEPTED_MAJORITY

    @staticmethod
    def _source_directions(
        fused: FusedScore,
    ) -> tuple[tuple[SourceId, Direction], ...]:
        """Net direction of each voting source across its timeframes."""
        totals = fused.source_contributions()
        return tuple(
            (source, Direction.from_sign(totals[source])) for source in sorted(totals)
        )

    def _fired_override(self, signals: tuple[Signal, ...]) -> Optional[Signal]:
        """Return the strongest fired risk-override signal, if any."""
        fired = [
            s
            for s in signals
            if self._config.is_risk_override(s.source)
            and s.direction in (Direction.SELL, Direction.HOLD)
            and s.strength >= self._config.risk_override_min_strength
        ]
        if not fired:
            return None
        return max(fired, key=lambda s: (s.strength, s.source))

    def _detect(
        self,
        fused: FusedScore,
        majority: Direction,
        consensus: float,
        resolution: ConflictResolution,
    ) -> list[ConflictRecord]:
        records: list[ConflictRecord] = []
        threshold = self._config.opposing_strength_threshold

        by_timeframe: dict[Timeframe, list[Signal]] = {}
        for ws in fused.weighted_signals:
            by_timeframe.setdefault(ws.signal.timeframe, []).append(ws.signal)

        for timeframe, group in by_timeframe.items():
            for a, b in combinations(group, 2):
                if a.source == b.source:
                    continue
                if a.direction.sign * b.direction.sign >= 0:
                    continue
                if a.strength > threshold and b.strength > threshold:
                    records.append(
                        ConflictRecord(
                            kind=ConflictKind.OPPOSING_DIRECTION,
                            resolution=resolution,
                            signal_a=a,
                            signal_b=b,
                            detail=(
                                f"{a.source} {a.direction.value} ({a.strength:.2f}) vs "
                                f"{b.source} {b.direction.value} ({b.strength:.2f}) "
                                f"on {timeframe.value}"
                            ),
                        )
                    )

        if len(fused.timeframe_scores) >= 2:
            short_tf, short_score = fused.timeframe_scores[0]
            long_tf, long_score = fused.timeframe_scores[-1]
            if short_score * long_score < 0:
                records.append(
                    ConflictRecord(
                        kind=ConflictKind.TIMEFRAME_DIVERGENCE,
                        resolution=resolution,
                        signal_a=self._strongest_in(
                            fused.weighted_signals, short_tf, short_score
                        ),
                        signal_b=self._strongest_in(
                            fused.weighted_signals, long_tf, long_score
                        ),
                        detail=(
                            f"{short_tf.value} score {short_score:+.3f} vs "
                            f"{long_tf.value} score {long_score:+.3f}"
                        ),
                    )
                )

        if consensus < self._config.min_consensus:
            dissent = [
                ws for ws in fused.weighted_signals if ws.signal.direction is not majority
            ]
            records.append(
                ConflictRecord(
                    kind=ConflictKind.LOW_CONSENSUS,
                    resolution=resolution,
                    signal_a=self._strongest(fused.weighted_signals, majority),
                    signal_b=(
                        max(dissent, key=lambda ws: abs(ws.contribution)).signal
                        if dissent
                        else None
                    ),
                    detail=(
                        f"{consensus:.0%} agree with {majority.value}, "
                        f"minimum {self._config.min_consensus:.0%}"
                    ),
                )
            )

        return records

    @staticmethod
    def _strongest(
        weighted: tuple[WeightedSignal, ...], direction: Direction
    ) -> Optional[Signal]:
        candidates = [ws for ws in weighted if ws.signal.direction is direction]
        if not candidates:
            return None
        return max(candidates, key=lambda ws: (abs(ws.contribution), ws.signal.strength)).signal

    @staticmethod
    def _strongest_in(
        weighted: tuple[WeightedSignal, ...], timeframe: Timeframe, score: float
    ) -> Optional[Signal]:
        direction = Direction.from_sign(score)
        candidates = [
            ws
            for ws in weighted
            if ws.signal.timeframe is timeframe and ws.signal.direction is direction
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda ws: abs(ws.contribution)).signal
