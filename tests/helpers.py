"""
Shared builders for recommendation tests.

Plain functions rather than fixtures so tests can build several
variants inline.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    Direction,
    IndicatorSet,
    MLPrediction,
    Pattern,
    Quote,
    Recommendation,
    RiskContext,
    SentimentReading,
    Signal,
    SourceKind,
    SourceWeight,
    Timeframe,
    VolumeProfile,
    WeightSnapshot,
)
from app.domain.recommendation.errors import SourceUnavailableError
from app.domain.recommendation.ports import SignalSource
from app.infrastructure.recommendation.collaborators import MarketCollaborators

NOW = datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)

_KINDS = {
    "technical": SourceKind.TECHNICAL,
    "pattern": SourceKind.PATTERN,
    "sentiment": SourceKind.SENTIMENT,
    "ml_model": SourceKind.ML_MODEL,
    "volume": SourceKind.VOLUME,
    "risk_override": SourceKind.RISK_OVERRIDE,
}


def make_signal(
    source: str,
    direction: Direction,
    strength: float,
    confidence: float = 0.8,
    timeframe: Timeframe = Timeframe.H1,
    symbol: str = "AAPL",
    explanation: str = "",
) -> Signal:
    return Signal(
        source=source,
        kind=_KINDS.get(source, SourceKind.TECHNICAL),
        symbol=symbol,
        timeframe=timeframe,
        direction=direction,
        strength=strength,
        confidence=confidence,
        computed_at=NOW,
        explanation=explanation,
    )


def make_snapshot(weights: dict[str, float], version: int = 1) -> WeightSnapshot:
    return WeightSnapshot(
        version=version,
        weights=tuple(
            SourceWeight(source=s, weight=w, accuracy_ema=0.5, last_updated=NOW)
            for s, w in sorted(weights.items())
        ),
        published_at=NOW,
    )


def equal_snapshot(*sources: str) -> WeightSnapshot:
    return make_snapshot({s: 1.0 / len(sources) for s in sources})


def make_quote(price: float = 100.0, atr: float = 2.0, symbol: str = "AAPL") -> Quote:
    return Quote(symbol=symbol, price=price, volume=1_000_000.0, atr=atr)


def make_risk(
    budget: float = 20.0, max_position: float = 10.0, exposure: float = 0.0
) -> RiskContext:
    return RiskContext(
        available_risk_budget_pct=budget,
        max_position_pct=max_position,
        open_correlated_exposure_pct=exposure,
    )


def make_recommendation(
    action: Action = Action.BUY,
    entry: Optional[float] = 100.0,
    stop: Optional[float] = 97.0,
    target: Optional[float] = 106.0,
    signals: tuple[Signal, ...] = (),
    timestamp: datetime = NOW,
    ttl_seconds: float = 14_400,
    symbol: str = "AAPL",
) -> Recommendation:
    executable = action in (Action.BUY, Action.SELL)
    return Recommendation(
        id=uuid4(),
        symbol=symbol,
        timestamp=timestamp,
        action=action,
        confidence=0.7,
        entry_price=entry,
        stop_loss=stop,
        take_profit=target,
        position_size_pct=5.0 if executable else 0.0,
        risk_reward_ratio=2.0 if executable else None,
        reasoning=(f"{action.value}: test",),
        contributing_signals=signals,
        expires_at=timestamp + timedelta(seconds=ttl_seconds),
        timeframe=Timeframe.H1,
        magnitude=0.5,
    )


def fast_config(**overrides) -> EngineConfig:
    """Engine config with a generous deadline for thread-backed tests."""
    values = {"deadline_ms": 2_000}
    values.update(overrides)
    return EngineConfig(**values)


class StubSource(SignalSource):
    """Scriptable signal source for collector and use case tests."""

    def __init__(
        self,
        source_id: str,
        direction: Direction = Direction.BUY,
        strength: float = 0.6,
        confidence: float = 0.7,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self._source_id = source_id
        self.direction = direction
        self.strength = strength
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.calls = 0

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def kind(self) -> SourceKind:
        return _KINDS.get(self._source_id, SourceKind.TECHNICAL)

    async def fetch(self, symbol: str, timeframe: Timeframe, deadline: float) -> Signal:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_signal(
            self._source_id,
            self.direction,
            self.strength,
            self.confidence,
            timeframe=timeframe,
            symbol=symbol,
        )


def unavailable(source: str) -> SourceUnavailableError:
    return SourceUnavailableError(source, "service down")


def bullish_market(symbol: str = "AAPL") -> MarketCollaborators:
    """Collaborators seeded so that every voting source says BUY on 1h."""
    collaborators = MarketCollaborators()
    collaborators.market_data.set_quote(make_quote(price=100.0, atr=1.0, symbol=symbol))
    collaborators.indicators.set(
        IndicatorSet(symbol=symbol, timeframe=Timeframe.H1, rsi=10.0, calibration=0.7)
    )
    collaborators.patterns.set(
        symbol, Timeframe.H1, [Pattern("double_bottom", Direction.BUY, reliability=0.7)]
    )
    collaborators.sentiment.set(symbol, SentimentReading(score=0.6, confidence=0.7))
    collaborators.predictions.set(
        symbol, Timeframe.H1, MLPrediction(direction=Direction.BUY, probability=0.8)
    )
    collaborators.volume.set(
        symbol,
        Timeframe.H1,
        VolumeProfile(price=101.0, support=90.0, resistance=100.0, relative_volume=1.6),
    )
    collaborators.portfolios.set("main", make_risk())
    collaborators.portfolios.set("empty", make_risk(budget=0.0))
    return collaborators
