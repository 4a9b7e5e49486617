"""
Pydantic schemas for recommendation API request/response validation.

These schemas enforce input validation and define the API contract.
No business logic belongs here. Risk budgets are deliberately not
range-checked: a zero or negative budget is a valid input that the
engine downgrades to WATCH.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, StringConstraints

SYMBOL_DESCRIPTION = "Ticker symbol"
SYMBOL_PATTERN = r"^[A-Za-z0-9.\-]+$"
SYMBOL_MIN_LEN = 1
SYMBOL_MAX_LEN = 15
TIMEFRAMES_DESCRIPTION = "Timeframe labels: 1m, 5m, 15m, 1h, 4h, 1d, 1w"

SymbolStr = Annotated[
    str,
    StringConstraints(
        min_length=SYMBOL_MIN_LEN, max_length=SYMBOL_MAX_LEN, pattern=SYMBOL_PATTERN
    ),
]


class RiskContextSchema(BaseModel):
    """Inline portfolio risk parameters, all in percent of equity."""

    available_risk_budget_pct: float
    max_position_pct: float
    open_correlated_exposure_pct: float = 0.0


class GenerateRecommendationRequest(BaseModel):
    """Request schema for a single-symbol evaluation.

    Attributes:
        symbol: Ticker symbol.
        timeframes: One or more timeframe labels to analyze.
        portfolio_id: Portfolio whose risk budget sizes the position.
        deadline_ms: Fan-out deadline override in milliseconds.
        risk_context: Inline risk context; wins over ``portfolio_id``.
    """

    symbol: str = Field(
        ...,
        min_length=SYMBOL_MIN_LEN,
        max_length=SYMBOL_MAX_LEN,
        pattern=SYMBOL_PATTERN,
        description=SYMBOL_DESCRIPTION,
    )
    timeframes: list[str] = Field(
        default_factory=lambda: ["1h"],
        min_length=1,
        max_length=7,
        description=TIMEFRAMES_DESCRIPTION,
    )
    portfolio_id: Optional[str] = Field(default=None, max_length=64)
    deadline_ms: Optional[int] = Field(default=None, ge=1, le=10_000)
    risk_context: Optional[RiskContextSchema] = None


class BulkGenerateRequest(BaseModel):
    """Request schema for evaluating several symbols in one call."""

    symbols: list[SymbolStr] = Field(
        ..., min_length=1, max_length=50, description="Ticker symbols"
    )
    timeframes: list[str] = Field(
        default_factory=lambda: ["1h"],
        min_length=1,
        max_length=7,
        description=TIMEFRAMES_DESCRIPTION,
    )
    portfolio_id: Optional[str] = Field(default=None, max_length=64)
    deadline_ms: Optional[int] = Field(default=None, ge=1, le=10_000)
    risk_context: Optional[RiskContextSchema] = None


class RecordOutcomeRequest(BaseModel):
    """Request schema for reporting a market observation.

    Attributes:
        price: Observed market price.
        observed_at: Observation time; defaults to now.
        state: Force a terminal state instead of deriving it from price.
    """

    price: float = Field(..., gt=0)
    observed_at: Optional[datetime] = None
    state: Optional[Literal["TARGET_HIT", "STOP_HIT", "EXPIRED"]] = None


class SignalItem(BaseModel):
    """A normalized signal that fed the recommendation."""

    source: str
    kind: str
    symbol: str
    timeframe: str
    direction: str
    strength: float
    confidence: float
    computed_at: datetime
    explanation: str


class ConflictItem(BaseModel):
    kind: str
    resolution: str
    signal_a: Optional[SignalItem] = None
    signal_b: Optional[SignalItem] = None
    detail: str


class RecommendationResponse(BaseModel):
    """Response schema for a recommendation and its audit trail."""

    id: UUID
    symbol: str
    timestamp: datetime
    action: str
    confidence: float
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size_pct: float
    risk_reward_ratio: Optional[float] = None
    reasoning: list[str]
    contributing_signals: list[SignalItem]
    expires_at: datetime
    timeframe: str
    magnitude: float
    risk_level: str
    conflicts: list[ConflictItem]
    failed_sources: list[str]
    weight_snapshot_version: int


class BulkErrorItem(BaseModel):
    symbol: str
    error: str
    detail: str


class BulkGenerateResponse(BaseModel):
    """Per-symbol results; failures do not fail the batch."""

    recommendations: list[RecommendationResponse]
    errors: list[BulkErrorItem]


class PerformanceSampleItem(BaseModel):
    source: str
    realized_direction_correct: bool
    realized_return: float
    observed_at: datetime


class RecordOutcomeResponse(BaseModel):
    """Response schema for an outcome report."""

    recommendation_id: UUID
    state: str
    samples: list[PerformanceSampleItem]
    snapshot_version: int


class SourceWeightItem(BaseModel):
    source: str
    weight: float
    accuracy_ema: float
    samples: int
    last_updated: datetime


class WeightSnapshotResponse(BaseModel):
    """Response schema for the current ensemble weights."""

    version: int
    published_at: datetime
    weights: list[SourceWeightItem]


class SourceHealthItem(BaseModel):
    source: str
    kind: str
    calls: int
    successes: int
    timeouts: int
    errors: int
    mean_latency_ms: float
    last_error: Optional[str] = None


class EnsembleStatusResponse(BaseModel):
    """Response schema for ensemble health."""

    snapshot_version: int
    weight_entropy: float
    max_weight_entropy: float
    open_recommendations: int
    sources: list[SourceHealthItem]
    weights: list[SourceWeightItem]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    sources: Optional[list[str]] = None
    weight_snapshot_version: Optional[int] = None


class ErrorResponse(BaseModel):
    """Standard error response returned by all error handlers."""

    error: str
    detail: str | None = None
