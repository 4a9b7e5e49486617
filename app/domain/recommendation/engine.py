"""
Domain service: Recommendation engine.

Pure orchestration of the synchronous pipeline:

    signals -> fusion -> conflict resolution -> uncertainty -> sizing -> assembly

Fan-out and IO live in the application layer; by the time the engine
runs, every signal that made it before the deadline is already in hand.
Recoverable failures (too few sources, malformed risk context, missing
market data) become WATCH/HOLD recommendations with zero size rather
than errors, so the engine always returns a Recommendation unless an
internal invariant is broken.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.domain.recommendation.assembler import RecommendationAssembler
from app.domain.recommendation.conflict_resolver import ConflictResolver
from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    Direction,
    Quote,
    Recommendation,
    RiskContext,
    Signal,
    SourceFailure,
    SourceId,
    Timeframe,
    WeightSnapshot,
)
from app.domain.recommendation.errors import (
    InsufficientSignalsError,
    InvalidRiskContextError,
    MarketDataUnavailableError,
)
from app.domain.recommendation.fusion_service import EnsembleFusionEngine
from app.domain.recommendation.risk_sizer import RiskAdjustedSizer, SizingResult
from app.domain.recommendation.uncertainty import UncertaintyQuantifier

logger = logging.getLogger(__name__)

_TIMEFRAME_ORDER = {tf: i for i, tf in enumerate(Timeframe)}


@dataclass(frozen=True)
class EvaluationInput:
    """Everything the engine needs for one symbol evaluation.

    Attributes:
        symbol: Ticker symbol.
        timeframes: Requested timeframes (at least one).
        signals: Signals that arrived before the deadline.
        snapshot: Weight snapshot read before fan-out.
        timestamp: Evaluation timestamp.
        quote: Current price and ATR, if available.
        risk_context: Portfolio risk budget, if available.
        failures: Source calls that produced no signal.
        expected_sources: Number of sources that were asked.
    """

    symbol: str
    timeframes: tuple[Timeframe, ...]
    signals: tuple[Signal, ...]
    snapshot: WeightSnapshot
    timestamp: datetime
    quote: Optional[Quote] = None
    risk_context: Optional[RiskContext] = None
    failures: tuple[SourceFailure, ...] = field(default_factory=tuple)
    expected_sources: int = 0

    @property
    def primary_timeframe(self) -> Timeframe:
        """The longest requested timeframe, which governs expiry."""
        return max(self.timeframes, key=_TIMEFRAME_ORDER.__getitem__)

    @property
    def failed_sources(self) -> tuple[SourceId, ...]:
        responded = {s.source for s in self.signals}
        return tuple(sorted({f.source for f in self.failures} - responded))


class RecommendationEngine:
    """Runs the fusion pipeline for one symbol and returns a Recommendation."""

    def __init__(
        self,
        config: EngineConfig,
        fusion: Optional[EnsembleFusionEngine] = None,
        resolver: Optional[ConflictResolver] = None,
        quantifier: Optional[UncertaintyQuantifier] = None,
        sizer: Optional[RiskAdjustedSizer] = None,
        assembler: Optional[RecommendationAssembler] = None,
    ) -> None:
        self._config = config
        self._fusion = fusion or EnsembleFusionEngine(config)
        self._resolver = resolver or ConflictResolver(config)
        self._quantifier = quantifier or UncertaintyQuantifier(config)
        self._sizer = sizer or RiskAdjustedSizer(config)
        self._assembler = assembler or RecommendationAssembler(config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    def evaluate(self, request: EvaluationInput) -> Recommendation:
        """Evaluate one symbol.

        Returns:
            An assembled Recommendation. Never raises for missing sources,
            a bad risk context or missing market data.

        Raises:
            InternalInvariantViolationError: If the assembled result
                breaks an ordering invariant.
        """
        timeframe = request.primary_timeframe
        failed = request.failed_sources

        try:
            self._check_sufficiency(request)
        except InsufficientSignalsError as exc:
            logger.warning("Degrading %s to WATCH: %s", request.symbol, exc.message)
            return self._assembler.degraded(
                symbol=request.symbol,
                timeframe=timeframe,
                timestamp=request.timestamp,
                action=Action.WATCH,
                reasoning=(
                    f"low confidence: insufficient data ({exc.responded}/"
                    f"{exc.expected} sources responded)",
                ),
                signals=tuple(request.signals),
                failed_sources=failed,
                snapshot_version=request.snapshot.version,
                quote=request.quote,
            )

        fused = self._fusion.fuse(request.symbol, request.signals, request.snapshot)
        resolved = self._resolver.resolve(fused)
        uncertainty = self._quantifier.quantify(resolved)
        sizing = self._size(request, resolved.direction, fused.magnitude,
                            uncertainty.confidence, resolved.aggressive)

        action = sizing.action
        notes: list[str] = []
        if (
            action is Action.HOLD
            and not resolved.unresolved
            and not resolved.vetoed
            and fused.urgency >= self._config.watch_urgency_threshold
        ):
            action = Action.WATCH
            notes.append(
                f"short-timeframe urgency {fused.urgency:.2f} at or above "
                f"{self._config.watch_urgency_threshold:.2f}: watch for entry"
            )

        recommendation = self._assembler.assemble(
            symbol=request.symbol,
            timeframe=timeframe,
            timestamp=request.timestamp,
            action=action,
            resolved=resolved,
            uncertainty=uncertainty,
            sizing=sizing,
            quote=request.quote,
            failed_sources=failed,
            snapshot_version=request.snapshot.version,
            extra_notes=notes,
        )
        logger.info(
            "Recommendation %s for %s: %s confidence=%.3f size=%.2f%%",
            recommendation.id,
            recommendation.symbol,
            recommendation.action.value,
            recommendation.confidence,
            recommendation.position_size_pct,
        )
        return recommendation

    def _check_sufficiency(self, request: EvaluationInput) -> None:
        voting = {
            s.source for s in request.signals
            if not self._config.is_risk_override(s.source)
        }
        asked = {s.source for s in request.signals} | {f.source for f in request.failures}
        expected = max(request.expected_sources, len(asked))
        if len(voting) < max(self._config.min_sources, 1):
            raise InsufficientSignalsError(
                responded=len(voting),
                expected=expected,
                required=max(self._config.min_sources, 1),
            )

    def _size(
        self,
        request: EvaluationInput,
        direction: Direction,
        magnitude: float,
        confidence: float,
        aggressive: bool,
    ) -> SizingResult:
        entry = (
            request.quote.price
            if request.quote is not None and request.quote.price > 0
            else None
        )
        try:
            return self._sizer.size(
                direction,
                magnitude,
                confidence,
                request.quote,
                request.risk_context,
                aggressive=aggressive,
            )
        except InvalidRiskContextError as exc:
            logger.warning("Risk context rejected for %s: %s", request.symbol, exc.reason)
            return SizingResult(
                action=Action.WATCH,
                position_size_pct=0.0,
                entry_price=entry,
                notes=(f"{exc.message}; downgraded to WATCH with zero size",),
            )
        except MarketDataUnavailableError as exc:
            logger.warning("Market data missing for %s: %s", request.symbol, exc.reason)
            return SizingResult(
                action=Action.WATCH,
                position_size_pct=0.0,
                entry_price=entry,
                notes=(
                    f"market data unavailable ({exc.reason}); downgraded to WATCH "
                    "with zero size",
                ),
            )
