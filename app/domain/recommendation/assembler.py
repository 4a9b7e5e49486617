"""
Domain service: Recommendation assembly.

Pure assembly step. Combines the outputs of fusion, conflict resolution,
uncertainty quantification and sizing into an immutable Recommendation
with a human-readable reasoning trace, then verifies the ordering
invariants before handing it out.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from app.domain.recommendation.conflict_resolver import ResolvedScore
from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    ConflictRecord,
    Direction,
    Quote,
    Recommendation,
    RiskLevel,
    Signal,
    SourceId,
    Timeframe,
)
from app.domain.recommendation.errors import InternalInvariantViolationError
from app.domain.recommendation.risk_sizer import SizingResult, levels_ordered
from app.domain.recommendation.uncertainty import UncertaintyEstimate

logger = logging.getLogger(__name__)

HIGH_RISK_CONFIDENCE = 0.4
MEDIUM_RISK_CONFIDENCE = 0.7
HIGH_RISK_VOLATILITY = 0.05  # ATR / price
MEDIUM_RISK_VOLATILITY = 0.02

_RR_TOLERANCE = 1e-9


class RecommendationAssembler:
    """Builds and verifies Recommendation objects."""

    def __init__(
        self,
        config: EngineConfig,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self._config = config
        self._id_factory = id_factory

    def assemble(
        self,
        *,
        symbol: str,
        timeframe: Timeframe,
        timestamp: datetime,
        action: Action,
        resolved: ResolvedScore,
        uncertainty: UncertaintyEstimate,
        sizing: SizingResult,
        quote: Optional[Quote],
        failed_sources: tuple[SourceId, ...] = (),
        snapshot_version: int = 0,
        extra_notes: Iterable[str] = (),
    ) -> Recommendation:
        """Assemble a full recommendation from the pipeline outputs.

        Raises:
            InternalInvariantViolationError: If the result breaks the
                stop/entry/target ordering or the risk/reward floor.
        """
        fused = resolved.fused
        reasoning: list[str] = [
            f"{action.value}: weighted score {fused.magnitude:+.3f} from "
            f"{resolved.active_sources} source(s), consensus {resolved.consensus:.0%} "
            f"{resolved.majority.value}, confidence {uncertainty.confidence:.2f}"
        ]
        reasoning.extend(self._factor_entries(resolved))
        reasoning.extend(resolved.notes)
        reasoning.append(self._uncertainty_entry(uncertainty))
        reasoning.extend(sizing.notes)
        reasoning.extend(extra_notes)
        if failed_sources:
            reasoning.append(
                f"excluded unresponsive sources: {', '.join(failed_sources)}"
            )

        executable = action.is_executable
        recommendation = Recommendation(
            id=self._id_factory(),
            symbol=symbol,
            timestamp=timestamp,
            action=action,
            confidence=uncertainty.confidence,
            entry_price=sizing.entry_price,
            stop_loss=sizing.stop_loss,
            take_profit=sizing.take_profit,
            position_size_pct=sizing.position_size_pct if executable else 0.0,
            risk_reward_ratio=sizing.risk_reward_ratio,
            reasoning=tuple(reasoning),
            contributing_signals=fused.contributing_signals,
            expires_at=self._expiry(timestamp, timeframe),
            timeframe=timeframe,
            magnitude=fused.magnitude,
            risk_level=self.risk_level(uncertainty.confidence, quote),
            conflicts=fused.conflicts,
            failed_sources=failed_sources,
            weight_snapshot_version=snapshot_version,
        )
        self.verify(recommendation)
        return recommendation

    def degraded(
        self,
        *,
        symbol: str,
        timeframe: Timeframe,
        timestamp: datetime,
        action: Action,
        reasoning: Iterable[str],
        signals: tuple[Signal, ...] = (),
        failed_sources: tuple[SourceId, ...] = (),
        snapshot_version: int = 0,
        quote: Optional[Quote] = None,
        confidence: float = 0.0,
        magnitude: float = 0.0,
        conflicts: tuple[ConflictRecord, ...] = (),
    ) -> Recommendation:
        """Build a non-executable (HOLD/WATCH) recommendation with zero size."""
        if action.is_executable:
            raise InternalInvariantViolationError(
                f"degraded recommendation cannot carry {action.value}"
            )
        recommendation = Recommendation(
            id=self._id_factory(),
            symbol=symbol,
            timestamp=timestamp,
            action=action,
            confidence=confidence,
            entry_price=quote.price if quote is not None and quote.price > 0 else None,
            stop_loss=None,
            take_profit=None,
            position_size_pct=0.0,
            risk_reward_ratio=None,
            reasoning=tuple(reasoning),
            contributing_signals=signals,
            expires_at=self._expiry(timestamp, timeframe),
            timeframe=timeframe,
            magnitude=magnitude,
            risk_level=RiskLevel.HIGH,
            conflicts=conflicts,
            failed_sources=failed_sources,
            weight_snapshot_version=snapshot_version,
        )
        self.verify(recommendation)
        return recommendation

    def verify(self, recommendation: Recommendation) -> None:
        """Enforce the recommendation invariants.

        Raises:
            InternalInvariantViolationError: On any violation.
        """
        problem = self._find_violation(recommendation)
        if problem is not None:
            logger.error(
                "Invariant violation for %s (%s): %s",
                recommendation.symbol,
                recommendation.id,
                problem,
            )
            raise InternalInvariantViolationError(problem)

    def _find_violation(self, rec: Recommendation) -> Optional[str]:
        if not rec.reasoning:
            return "empty reasoning"
        if not 0.0 <= rec.confidence <= 1.0:
            return f"confidence {rec.confidence} outside [0, 1]"
        if rec.position_size_pct < 0:
            return f"negative position size {rec.position_size_pct}"
        if not rec.action.is_executable:
            if rec.position_size_pct != 0.0:
                return f"{rec.action.value} with non-zero size {rec.position_size_pct}"
            return None

        if rec.entry_price is None or rec.stop_loss is None or rec.take_profit is None:
            return f"{rec.action.value} without entry/stop/target"
        direction = Direction.BUY if rec.action is Action.BUY else Direction.SELL
        if not levels_ordered(direction, rec.entry_price, rec.stop_loss, rec.take_profit):
            return (
                f"{rec.action.value} levels out of order: stop={rec.stop_loss} "
                f"entry={rec.entry_price} target={rec.take_profit}"
            )
        if (
            rec.risk_reward_ratio is None
            or rec.risk_reward_ratio + _RR_TOLERANCE < self._config.min_risk_reward
        ):
            return (
                f"{rec.action.value} with risk/reward {rec.risk_reward_ratio} below "
                f"{self._config.min_risk_reward}"
            )
        return None

    def _expiry(self, timestamp: datetime, timeframe: Timeframe) -> datetime:
        return timestamp + timedelta(seconds=self._config.ttl_for(timeframe))

    @staticmethod
    def risk_level(confidence: float, quote: Optional[Quote]) -> RiskLevel:
        """Classify risk from confidence and relative volatility (ATR / price)."""
        if quote is None or quote.price <= 0:
            return RiskLevel.HIGH
        volatility = quote.atr / quote.price
        if confidence < HIGH_RISK_CONFIDENCE or volatility > HIGH_RISK_VOLATILITY:
            return RiskLevel.HIGH
        if confidence < MEDIUM_RISK_CONFIDENCE or volatility > MEDIUM_RISK_VOLATILITY:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def _factor_entries(resolved: ResolvedScore) -> list[str]:
        """One entry per voting source, by descending |contribution|."""
        fused = resolved.fused
        contributions = fused.source_contributions()
        directions = dict(resolved.source_directions)

        by_source: dict[SourceId, list[Signal]] = {}
        for ws in fused.weighted_signals:
            by_source.setdefault(ws.signal.source, []).append(ws.signal)

        entries = []
        for source in sorted(contributions, key=lambda s: (-abs(contributions[s]), s)):
            signals = by_source[source]
            lead = max(signals, key=lambda s: (s.strength, s.confidence))
            direction = directions.get(source, Direction.HOLD)
            timeframes = ", ".join(s.timeframe.value for s in signals)
            entry = (
                f"{source} {direction.value} (strength {lead.strength:.2f}, "
                f"confidence {lead.confidence:.2f}, {timeframes}) "
                f"contribution {contributions[source]:+.3f}"
            )
            if direction is not resolved.majority:
                entry += f"; dissents from majority {resolved.majority.value}"
            if lead.explanation:
                entry += f": {lead.explanation}"
            entries.append(entry)
        return entries

    @staticmethod
    def _uncertainty_entry(uncertainty: UncertaintyEstimate) -> str:
        entry = (
            f"uncertainty: aleatoric {uncertainty.aleatoric:.2f}, "
            f"epistemic {uncertainty.epistemic:.2f}"
        )
        if uncertainty.penalized:
            entry += "; unresolved-conflict penalty applied"
        if uncertainty.single_source:
            entry += "; single source, confidence capped"
        return entry
