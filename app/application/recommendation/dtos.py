"""
Data Transfer Objects for the recommendation application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior; the ``*_result`` helpers
at the bottom map domain entities onto them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.domain.recommendation.entities import (
    ConflictRecord,
    PerformanceSample,
    Recommendation,
    RiskContext,
    Signal,
    WeightSnapshot,
)


# ------------------------------------------------------------------
# Commands and queries
# ------------------------------------------------------------------


@dataclass(frozen=True)
class GenerateRecommendationCommand:
    """Input DTO for one symbol evaluation.

    Attributes:
        symbol: Ticker symbol.
        timeframes: Timeframe labels (e.g. ``"1h"``, ``"1d"``).
        portfolio_id: Portfolio whose risk budget sizes the position.
        deadline_ms: Fan-out deadline override; defaults to configuration.
        risk_context: Inline risk context; takes precedence over
            ``portfolio_id`` when given.
    """

    symbol: str
    timeframes: tuple[str, ...]
    portfolio_id: Optional[str] = None
    deadline_ms: Optional[int] = None
    risk_context: Optional[RiskContext] = None


@dataclass(frozen=True)
class BulkGenerateCommand:
    """Input DTO for a batched evaluation over several symbols."""

    symbols: tuple[str, ...]
    timeframes: tuple[str, ...]
    portfolio_id: Optional[str] = None
    deadline_ms: Optional[int] = None
    risk_context: Optional[RiskContext] = None


@dataclass(frozen=True)
class RecordOutcomeCommand:
    """Input DTO for a realized market observation.

    Attributes:
        recommendation_id: Id of a published recommendation.
        price: Observed market price.
        observed_at: Observation time; defaults to now.
        state: Optional forced terminal state (``TARGET_HIT``,
            ``STOP_HIT`` or ``EXPIRED``).
    """

    recommendation_id: UUID
    price: float
    observed_at: Optional[datetime] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class GetRecommendationQuery:
    recommendation_id: UUID


@dataclass(frozen=True)
class GetLatestRecommendationQuery:
    symbol: str


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True)
class SignalResult:
    source: str
    kind: str
    symbol: str
    timeframe: str
    direction: str
    strength: float
    confidence: float
    computed_at: datetime
    explanation: str


@dataclass(frozen=True)
class ConflictResult:
    kind: str
    resolution: str
    signal_a: Optional[SignalResult]
    signal_b: Optional[SignalResult]
    detail: str


@dataclass(frozen=True)
class RecommendationResult:
    """Output DTO for a recommendation, including its audit trail."""

    id: UUID
    symbol: str
    timestamp: datetime
    action: str
    confidence: float
    entry_price: Optional[float]
    stop_loss: Optional[float]
    take_profit: Optional[float]
    position_size_pct: float
    risk_reward_ratio: Optional[float]
    reasoning: list[str]
    contributing_signals: list[SignalResult]
    expires_at: datetime
    timeframe: str
    magnitude: float
    risk_level: str
    conflicts: list[ConflictResult]
    failed_sources: list[str]
    weight_snapshot_version: int


@dataclass(frozen=True)
class BulkError:
    """A per-symbol failure inside a bulk evaluation."""

    symbol: str
    error: str
    detail: str


@dataclass(frozen=True)
class BulkGenerateResult:
    recommendations: list[RecommendationResult] = field(default_factory=list)
    errors: list[BulkError] = field(default_factory=list)


@dataclass(frozen=True)
class PerformanceSampleResult:
    source: str
    realized_direction_correct: bool
    realized_return: float
    observed_at: datetime


@dataclass(frozen=True)
class RecordOutcomeResult:
    """Output DTO for an outcome ingestion."""

    recommendation_id: UUID
    state: str
    samples: list[PerformanceSampleResult]
    snapshot_version: int


@dataclass(frozen=True)
class SourceWeightResult:
    source: str
    weight: float
    accuracy_ema: float
    samples: int
    last_updated: datetime


@dataclass(frozen=True)
class WeightSnapshotResult:
    version: int
    published_at: datetime
    weights: list[SourceWeightResult]


@dataclass(frozen=True)
class SourceHealthResult:
    source: str
    kind: str
    calls: int
    successes: int
    timeouts: int
    errors: int
    mean_latency_ms: float
    last_error: Optional[str]


@dataclass(frozen=True)
class EnsembleStatusResult:
    """Output DTO for ensemble health."""

    snapshot_version: int
    weight_entropy: float
    max_weight_entropy: float
    open_recommendations: int
    sources: list[SourceHealthResult]
    weights: list[SourceWeightResult]


# ------------------------------------------------------------------
# Mappers
# ------------------------------------------------------------------


def signal_result(signal: Signal) -> SignalResult:
    return SignalResult(
        source=signal.source,
        kind=signal.kind.value,
        symbol=signal.symbol,
        timeframe=signal.timeframe.value,
        direction=signal.direction.value,
        strength=signal.strength,
        confidence=signal.confidence,
        computed_at=signal.computed_at,
        explanation=signal.explanation,
    )


def conflict_result(record: ConflictRecord) -> ConflictResult:
    return ConflictResult(
        kind=record.kind.value,
        resolution=record.resolution.value,
        signal_a=signal_result(record.signal_a) if record.signal_a else None,
        signal_b=signal_result(record.signal_b) if record.signal_b else None,
        detail=record.detail,
    )


def recommendation_result(rec: Recommendation) -> RecommendationResult:
    """Map a domain Recommendation onto its output DTO."""
    return RecommendationResult(
        id=rec.id,
        symbol=rec.symbol,
        timestamp=rec.timestamp,
        action=rec.action.value,
        confidence=rec.confidence,
        entry_price=rec.entry_price,
        stop_loss=rec.stop_loss,
        take_profit=rec.take_profit,
        position_size_pct=rec.position_size_pct,
        risk_reward_ratio=rec.risk_reward_ratio,
        reasoning=list(rec.reasoning),
        contributing_signals=[signal_result(s) for s in rec.contributing_signals],
        expires_at=rec.expires_at,
        timeframe=rec.timeframe.value,
        magnitude=rec.magnitude,
        risk_level=rec.risk_level.value,
        conflicts=[conflict_result(c) for c in rec.conflicts],
        failed_sources=list(rec.failed_sources),
        weight_snapshot_version=rec.weight_snapshot_version,
    )


def sample_result(sample: PerformanceSample) -> PerformanceSampleResult:
    return PerformanceSampleResult(
        source=sample.source,
        realized_direction_correct=sample.realized_direction_correct,
        realized_return=sample.realized_return,
        observed_at=sample.observed_at,
    )


def snapshot_result(snapshot: WeightSnapshot) -> WeightSnapshotResult:
    return WeightSnapshotResult(
        version=snapshot.version,
        published_at=snapshot.published_at,
        weights=[
            SourceWeightResult(
                source=w.source,
                weight=w.weight,
                accuracy_ema=w.accuracy_ema,
                samples=w.samples,
                last_updated=w.last_updated,
            )
            for w in snapshot.weights
        ],
    )
