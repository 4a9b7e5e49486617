"""
Adapters: Signal sources.

Implements the SignalSource port once per analysis domain. Every variant
shares the same deadline handling (the blocking collaborator call runs
in a worker thread and is abandoned at the deadline); they differ only
in how the collaborator's output maps onto direction, strength and
confidence.
"""

import asyncio
import logging
import math
import time
from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.domain.recommendation.entities import (
    Direction,
    IndicatorSet,
    MLPrediction,
    Pattern,
    Quote,
    SentimentReading,
    Signal,
    SourceKind,
    Timeframe,
    VolumeProfile,
)
from app.domain.recommendation.errors import (
    SourceTimeoutError,
    SourceUnavailableError,
)
from app.domain.recommendation.ports import (
    MarketDataProvider,
    MLPredictionService,
    PatternRecognitionService,
    SentimentService,
    SignalSource,
    TechnicalIndicatorService,
    VolumeAnalysisService,
)

logger = logging.getLogger(__name__)

RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0
VOLUME_HOLD_BAND = 0.2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class Opinion:
    """Normalized output of one analysis domain."""

    direction: Direction
    strength: float
    confidence: float
    explanation: str = ""


class SignalSourceAdapter(SignalSource):
    """Common deadline handling for every signal source variant."""

    kind_value: SourceKind

    def __init__(
        self,
        source_id: str,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source_id = source_id
        self._clock = clock
        self._now = now

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def kind(self) -> SourceKind:
        return self.kind_value

    async def fetch(self, symbol: str, timeframe: Timeframe, deadline: float) -> Signal:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise SourceTimeoutError(self._source_id, 0.0)
        try:
            reading = await asyncio.wait_for(
                asyncio.to_thread(self.read, symbol, timeframe), timeout=remaining
            )
        except asyncio.TimeoutError:
            raise SourceTimeoutError(self._source_id, remaining * 1000.0) from None
        except SourceUnavailableError:
            raise
        except Exception as exc:
            raise SourceUnavailableError(self._source_id, str(exc)) from exc

        opinion = self.normalize(reading)
        return Signal(
            source=self._source_id,
            kind=self.kind_value,
            symbol=symbol,
            timeframe=timeframe,
            direction=opinion.direction,
            strength=_unit(opinion.strength),
            confidence=_unit(opinion.confidence),
            computed_at=self._now(),
            explanation=opinion.explanation,
        )

    @abstractmethod
    def read(self, symbol: str, timeframe: Timeframe) -> Any:
        """Blocking call into the collaborator."""
        raise NotImplementedError

    @abstractmethod
    def normalize(self, reading: Any) -> Opinion:
        """Map the collaborator output onto a normalized opinion."""
        raise NotImplementedError


class TechnicalSource(SignalSourceAdapter):
    """RSI extremes dominate; otherwise MACD and Bollinger %B vote."""

    kind_value = SourceKind.TECHNICAL

    def __init__(self, service: TechnicalIndicatorService, source_id: str = "technical", **kwargs) -> None:
        super().__init__(source_id, **kwargs)
        self._service = service

    def read(self, symbol: str, timeframe: Timeframe) -> IndicatorSet:
        return self._service.compute(symbol, timeframe)

    def normalize(self, reading: IndicatorSet) -> Opinion:
        rsi = reading.rsi
        if rsi is not None and rsi > RSI_OVERBOUGHT:
            return Opinion(
                Direction.SELL,
                min(1.0, (rsi - RSI_OVERBOUGHT) / 30.0),
                reading.calibration,
                f"RSI {rsi:.1f} overbought",
            )
        if rsi is not None and rsi < RSI_OVERSOLD:
            return Opinion(
                Direction.BUY,
                min(1.0, (RSI_OVERSOLD - rsi) / 30.0),
                reading.calibration,
                f"RSI {rsi:.1f} oversold",
            )

        votes: list[float] = []
        parts: list[str] = []
        if reading.macd_histogram is not None:
            votes.append(math.tanh(reading.macd_histogram))
            parts.append(f"MACD histogram {reading.macd_histogram:+.3f}")
        if reading.bollinger_percent_b is not None:
            b = reading.bollinger_percent_b
            if b > 1.0:
                votes.append(-min(1.0, b - 1.0))
            elif b < 0.0:
                votes.append(min(1.0, -b))
            else:
                votes.append(0.0)
            parts.append(f"Bollinger %B {b:.2f}")
        if rsi is not None:
            parts.append(f"RSI {rsi:.1f} neutral")

        score = math.fsum(votes) / len(votes) if votes else 0.0
        return Opinion(
            Direction.from_sign(score),
            abs(score),
            reading.calibration,
            ", ".join(parts) or "no indicator readings",
        )


class PatternSource(SignalSourceAdapter):
    """Net reliability-weighted vote of the detected chart patterns."""

    kind_value = SourceKind.PATTERN

    def __init__(self, service: PatternRecognitionService, source_id: str = "pattern", **kwargs) -> None:
        super().__init__(source_id, **kwargs)
        self._service = service

    def read(self, symbol: str, timeframe: Timeframe) -> list[Pattern]:
        return self._service.detect(symbol, timeframe)

    def normalize(self, reading: list[Pattern]) -> Opinion:
        if not reading:
            return Opinion(Direction.HOLD, 0.0, 0.0, "no patterns detected")
        score = max(
            -1.0,
            min(1.0, math.fsum(p.direction.sign * p.reliability * p.completion for p in reading)),
        )
        direction = Direction.from_sign(score)
        agreeing = [p for p in reading if p.direction is direction] or list(reading)
        names = ", ".join(f"{p.name} ({p.direction.value})" for p in reading)
        return Opinion(
            direction,
            abs(score),
            max(p.reliability for p in agreeing),
            names,
        )


class SentimentSource(SignalSourceAdapter):
    """Aggregated sentiment score; timeframe-independent."""

    kind_value = SourceKind.SENTIMENT

    def __init__(
        self,
        service: SentimentService,
        source_id: str = "sentiment",
        neutral_band: float = 0.05,
        **kwargs,
    ) -> None:
        super().__init__(source_id, **kwargs)
        self._service = service
        self._neutral_band = neutral_band

    def read(self, symbol: str, timeframe: Timeframe) -> SentimentReading:
        return self._service.score(symbol)

    def normalize(self, reading: SentimentReading) -> Opinion:
        score = max(-1.0, min(1.0, reading.score))
        if abs(score) <= self._neutral_band:
            direction = Direction.HOLD
        else:
            direction = Direction.from_sign(score)
        return Opinion(direction, abs(score), reading.confidence, f"sentiment score {score:+.2f}")


class MLModelSource(SignalSourceAdapter):
    """Directional model prediction; probability drives both terms."""

    kind_value = SourceKind.ML_MODEL

    def __init__(self, service: MLPredictionService, source_id: str = "ml_model", **kwargs) -> None:
        super().__init__(source_id, **kwargs)
        self._service = service

    def read(self, symbol: str, timeframe: Timeframe) -> MLPrediction:
        return self._service.predict(symbol, timeframe)

    def normalize(self, reading: MLPrediction) -> Opinion:
        probability = _unit(reading.probability)
        strength = 0.0 if reading.direction is Direction.HOLD else 2.0 * (probability - 0.5)
        return Opinion(
            reading.direction,
            strength,
            probability,
            f"model predicts {reading.direction.value} with p={probability:.2f}",
        )


class VolumeSource(SignalSourceAdapter):
    """Support/resistance position, with breakouts outside the range."""

    kind_value = SourceKind.VOLUME

    def __init__(self, service: VolumeAnalysisService, source_id: str = "volume", **kwargs) -> None:
        super().__init__(source_id, **kwargs)
        self._service = service

    def read(self, symbol: str, timeframe: Timeframe) -> VolumeProfile:
        return self._service.analyze(symbol, timeframe)

    def normalize(self, reading: VolumeProfile) -> Opinion:
        span = reading.resistance - reading.support
        if span <= 0:
            raise SourceUnavailableError(
                self.source_id,
                f"resistance {reading.resistance} not above support {reading.support}",
            )
        confidence = max(0.1, min(1.0, reading.relative_volume / 2.0))
        if reading.price > reading.resistance:
            return Opinion(
                Direction.BUY,
                min(1.0, 0.5 + (reading.price - reading.resistance) / span),
                confidence,
                f"breakout above resistance {reading.resistance:.2f} "
                f"on {reading.relative_volume:.1f}x volume",
            )
        if reading.price < reading.support:
            return Opinion(
                Direction.SELL,
                min(1.0, 0.5 + (reading.support - reading.price) / span),
                confidence,
                f"breakdown below support {reading.support:.2f} "
                f"on {reading.relative_volume:.1f}x volume",
            )

        score = 1.0 - 2.0 * (reading.price - reading.support) / span
        direction = Direction.HOLD if abs(score) < VOLUME_HOLD_BAND else Direction.from_sign(score)
        return Opinion(
            direction,
            abs(score),
            confidence,
            f"price {reading.price:.2f} within support {reading.support:.2f} / "
            f"resistance {reading.resistance:.2f}",
        )


class RiskOverrideSource(SignalSourceAdapter):
    """Volatility-spike circuit breaker fed by market quotes.

    Fires SELL once ATR / price reaches ``spike_ratio``; below that it
    reports HOLD with a strength under the firing threshold.
    """

    kind_value = SourceKind.RISK_OVERRIDE

    def __init__(
        self,
        market_data: MarketDataProvider,
        source_id: str = "risk_override",
        spike_ratio: float = 0.05,
        **kwargs,
    ) -> None:
        super().__init__(source_id, **kwargs)
        self._market_data = market_data
        self._spike_ratio = spike_ratio

    def read(self, symbol: str, timeframe: Timeframe) -> Quote:
        return self._market_data.get_quote(symbol)

    def normalize(self, reading: Quote) -> Opinion:
        if reading.price <= 0:
            raise SourceUnavailableError(self.source_id, f"non-positive price {reading.price}")
        ratio = reading.atr / reading.price
        level = ratio / self._spike_ratio
        if level >= 1.0:
            return Opinion(
                Direction.SELL,
                min(1.0, 0.5 * level),
                0.9,
                f"volatility spike: ATR/price {ratio:.2%} at or above {self._spike_ratio:.2%}",
            )
        return Opinion(
            Direction.HOLD,
            0.5 * level,
            0.9,
            f"volatility normal: ATR/price {ratio:.2%}",
        )
