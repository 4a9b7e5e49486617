"""
Domain entities for the recommendation bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.
All value objects that cross pipeline stages are frozen.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from app.domain.recommendation.errors import InvalidTimeframeError

SourceId = str


class Direction(Enum):
    """Directional opinion of a single signal or of the fused score."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def sign(self) -> int:
        """Return +1 for BUY, -1 for SELL, 0 for HOLD."""
        if self is Direction.BUY:
            return 1
        if self is Direction.SELL:
            return -1
        return 0

    @classmethod
    def from_sign(cls, value: float) -> "Direction":
        """Map a signed number onto a direction (zero maps to HOLD)."""
        if value > 0:
            return cls.BUY
        if value < 0:
            return cls.SELL
        return cls.HOLD


class Action(Enum):
    """Final action carried by a recommendation."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WATCH = "WATCH"

    @property
    def is_executable(self) -> bool:
        return self in (Action.BUY, Action.SELL)


class SourceKind(Enum):
    """Capability set of signal sources, one variant per analysis domain."""

    TECHNICAL = "technical"
    PATTERN = "pattern"
    SENTIMENT = "sentiment"
    ML_MODEL = "ml_model"
    VOLUME = "volume"
    RISK_OVERRIDE = "risk_override"


class Timeframe(Enum):
    """Supported analysis timeframes, ordered from shortest to longest."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1w"

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]

    @classmethod
    def parse(cls, label: str) -> "Timeframe":
        """Parse a timeframe label such as ``"1h"``.

        Raises:
            InvalidTimeframeError: If the label is not a known timeframe.
        """
        try:
            return cls(label.strip().lower())
        except ValueError:
            raise InvalidTimeframeError(label) from None


_TIMEFRAME_SECONDS = {
    Timeframe.M1: 60,
    Timeframe.M5: 300,
    Timeframe.M15: 900,
    Timeframe.H1: 3_600,
    Timeframe.H4: 14_400,
    Timeframe.D1: 86_400,
    Timeframe.W1: 604_800,
}


class ConflictKind(Enum):
    """Kinds of disagreement detected among sources or timeframes."""

    OPPOSING_DIRECTION = "OPPOSING_DIRECTION"
    TIMEFRAME_DIVERGENCE = "TIMEFRAME_DIVERGENCE"
    LOW_CONSENSUS = "LOW_CONSENSUS"


class ConflictResolution(Enum):
    """How a detected conflict was resolved."""

    VETOED = "VETOED"
    DISCOUNTED = "DISCOUNTED"
    ACCEPTED_MAJORITY = "ACCEPTED_MAJORITY"
    UNRESOLVED = "UNRESOLVED"


class RiskLevel(Enum):
    """Coarse risk classification of a recommendation."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class OutcomeState(Enum):
    """Lifecycle state of a published recommendation."""

    PUBLISHED = "PUBLISHED"
    TARGET_HIT = "TARGET_HIT"
    STOP_HIT = "STOP_HIT"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not OutcomeState.PUBLISHED


# ------------------------------------------------------------------
# Signals
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Signal:
    """One source's opinion at one timeframe.

    Raises:
        ValueError: If strength or confidence fall outside [0, 1].
    """

    source: SourceId
    kind: SourceKind
    symbol: str
    timeframe: Timeframe
    direction: Direction
    strength: float
    confidence: float
    computed_at: datetime
    explanation: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"strength out of range: {self.strength}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def signed_strength(self) -> float:
        """Return ``strength × sign(direction)``."""
        return self.strength * self.direction.sign


@dataclass(frozen=True)
class SourceFailure:
    """A source call that produced no signal for one timeframe."""

    source: SourceId
    timeframe: Timeframe
    reason: str
    timed_out: bool


# ------------------------------------------------------------------
# Weights
# ------------------------------------------------------------------


@dataclass(frozen=True)
class SourceWeight:
    """Weight and realized accuracy of one source."""

    source: SourceId
    weight: float
    accuracy_ema: float
    last_updated: datetime
    samples: int = 0


@dataclass(frozen=True)
class WeightSnapshot:
    """Immutable set of source weights published by the feedback loop.

    Weights of all sources in a snapshot sum to 1.0.
    """

    version: int
    weights: tuple[SourceWeight, ...]
    published_at: datetime

    def weight_for(self, source: SourceId) -> float:
        """Return the weight of a source, or 0.0 if it is not tracked."""
        for entry in self.weights:
            if entry.source == source:
                return entry.weight
        return 0.0

    def get(self, source: SourceId) -> Optional[SourceWeight]:
        for entry in self.weights:
            if entry.source == source:
                return entry
        return None

    @property
    def sources(self) -> tuple[SourceId, ...]:
        return tuple(entry.source for entry in self.weights)


# ------------------------------------------------------------------
# Fusion artifacts
# ------------------------------------------------------------------


@dataclass(frozen=True)
class WeightedSignal:
    """A voting signal with the effective weight it received in fusion.

    ``weight`` is the source weight renormalized over the responders of
    the signal's timeframe, times the normalized conviction weight of
    that timeframe. ``contribution`` is ``weight × signed_strength``.
    """

    signal: Signal
    weight: float
    contribution: float


@dataclass(frozen=True)
class ConflictRecord:
    """Append-only audit entry describing one detected conflict."""

    kind: ConflictKind
    resolution: ConflictResolution
    signal_a: Optional[Signal]
    signal_b: Optional[Signal]
    detail: str = ""


@dataclass(frozen=True)
class FusedScore:
    """Output of the ensemble fusion step (plus conflicts once resolved)."""

    symbol: str
    direction: Direction
    magnitude: float
    contributing_signals: tuple[Signal, ...]
    conflicts: tuple[ConflictRecord, ...] = ()
    weighted_signals: tuple[WeightedSignal, ...] = ()
    timeframe_scores: tuple[tuple[Timeframe, float], ...] = ()
    urgency: float = 0.0

    def source_contributions(self) -> dict[SourceId, float]:
        """Return each voting source's summed contribution to the magnitude."""
        totals: dict[SourceId, float] = {}
        for ws in self.weighted_signals:
            totals[ws.signal.source] = totals.get(ws.signal.source, 0.0) + ws.contribution
        return totals


# ------------------------------------------------------------------
# Market and portfolio context
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Quote:
    """Current price and volatility for a symbol."""

    symbol: str
    price: float
    volume: float
    atr: float


@dataclass(frozen=True)
class RiskContext:
    """Portfolio risk budget, all values in percent of portfolio equity."""

    available_risk_budget_pct: float
    max_position_pct: float
    open_correlated_exposure_pct: float = 0.0


@dataclass(frozen=True)
class IndicatorSet:
    """Technical indicator readings for one symbol and timeframe.

    ``calibration`` is the historical hit rate of these indicators on
    the symbol, used as the signal's confidence.
    """

    symbol: str
    timeframe: Timeframe
    rsi: Optional[float] = None
    macd_histogram: Optional[float] = None
    bollinger_percent_b: Optional[float] = None
    calibration: float = 0.5


@dataclass(frozen=True)
class Pattern:
    """A detected chart pattern."""

    name: str
    direction: Direction
    reliability: float
    completion: float = 1.0


@dataclass(frozen=True)
class SentimentReading:
    """Aggregated news/social sentiment for a symbol."""

    score: float
    confidence: float


@dataclass(frozen=True)
class MLPrediction:
    """A directional model prediction for a horizon."""

    direction: Direction
    probability: float


@dataclass(frozen=True)
class VolumeProfile:
    """Volume and support/resistance analysis for a symbol and timeframe."""

    price: float
    support: float
    resistance: float
    relative_volume: float


# ------------------------------------------------------------------
# Recommendation lifecycle
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Recommendation:
    """The terminal artifact of one evaluation.

    Immutable; superseded (never mutated) by later recommendations for
    the same symbol.
    """

    id: UUID
    symbol: str
    timestamp: datetime
    action: Action
    confidence: float
    entry_price: Optional[float]
    stop_loss: Optional[float]
    take_profit: Optional[float]
    position_size_pct: float
    risk_reward_ratio: Optional[float]
    reasoning: tuple[str, ...]
    contributing_signals: tuple[Signal, ...]
    expires_at: datetime
    timeframe: Timeframe
    magnitude: float = 0.0
    risk_level: RiskLevel = RiskLevel.HIGH
    conflicts: tuple[ConflictRecord, ...] = ()
    failed_sources: tuple[SourceId, ...] = ()
    weight_snapshot_version: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class OutcomeEvent:
    """A realized market observation for a published recommendation.

    ``state`` may force a terminal transition (e.g. a broker fill at the
    stop); when None the tracker derives the transition from ``price``.
    """

    price: float
    observed_at: datetime
    state: Optional[OutcomeState] = None


@dataclass(frozen=True)
class PerformanceSample:
    """Realized correctness of one source for one recommendation.

    ``outcome_state`` is the terminal state that produced the sample.
    """

    recommendation_id: UUID
    source: SourceId
    realized_direction_correct: bool
    realized_return: float
    observed_at: datetime
    outcome_state: Optional[OutcomeState] = None


@dataclass(frozen=True)
class OutcomeResult:
    """Result of feeding an outcome event to the feedback tracker."""

    recommendation_id: UUID
    state: OutcomeState
    samples: tuple[PerformanceSample, ...] = field(default_factory=tuple)
    snapshot_version: int = 0
