"""
Adapters: In-memory external collaborators.

Market data, the five analysis domains and the portfolio risk context
are external systems. These adapters keep the latest reading per
symbol (and timeframe) in memory, fed either programmatically or from
a JSON fixture file, so the service runs end-to-end without them.

Fixture layout::

    {
      "quotes":     {"AAPL": {"price": 190.0, "volume": 1e6, "atr": 2.5}},
      "indicators": {"AAPL": {"1h": {"rsi": 75, "macd_histogram": 0.4,
                                     "bollinger_percent_b": 0.9,
                                     "calibration": 0.7}}},
      "patterns":   {"AAPL": {"1h": [{"name": "double_top",
                                      "direction": "SELL",
                                      "reliability": 0.6}]}},
      "sentiment":  {"AAPL": {"score": 0.4, "confidence": 0.6}},
      "predictions": {"AAPL": {"1h": {"direction": "BUY", "probability": 0.7}}},
      "volume":     {"AAPL": {"1h": {"price": 190, "support": 185,
                                     "resistance": 200,
                                     "relative_volume": 1.2}}},
      "portfolios": {"main": {"available_risk_budget_pct": 20,
                              "max_position_pct": 10,
                              "open_correlated_exposure_pct": 0}}
    }
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from app.domain.recommendation.entities import (
    Direction,
    IndicatorSet,
    MLPrediction,
    Pattern,
    Quote,
    RiskContext,
    SentimentReading,
    Timeframe,
    VolumeProfile,
)
from app.domain.recommendation.errors import (
    MarketDataUnavailableError,
    PortfolioNotFoundError,
    SourceUnavailableError,
)
from app.domain.recommendation.ports import (
    MarketDataProvider,
    MLPredictionService,
    PatternRecognitionService,
    PortfolioContextProvider,
    SentimentService,
    TechnicalIndicatorService,
    VolumeAnalysisService,
)

logger = logging.getLogger(__name__)


class _Store:
    """Thread-safe keyed store shared by the in-memory collaborators."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict = {}

    def put(self, key, value) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key):
        with self._lock:
            return self._data.get(key)


class InMemoryMarketData(MarketDataProvider):
    def __init__(self) -> None:
        self._store = _Store()

    def set_quote(self, quote: Quote) -> None:
        self._store.put(quote.symbol.upper(), quote)

    def get_quote(self, symbol: str) -> Quote:
        quote = self._store.get(symbol.upper())
        if quote is None:
            raise MarketDataUnavailableError(symbol, "no quote")
        return quote


class InMemoryIndicators(TechnicalIndicatorService):
    def __init__(self) -> None:
        self._store = _Store()

    def set(self, indicators: IndicatorSet) -> None:
        self._store.put((indicators.symbol.upper(), indicators.timeframe), indicators)

    def compute(self, symbol: str, timeframe: Timeframe) -> IndicatorSet:
        reading = self._store.get((symbol.upper(), timeframe))
        if reading is None:
            raise SourceUnavailableError("technical", f"no indicators for {symbol} {timeframe.value}")
        return reading


class InMemoryPatterns(PatternRecognitionService):
    def __init__(self) -> None:
        self._store = _Store()

    def set(self, symbol: str, timeframe: Timeframe, patterns: list[Pattern]) -> None:
        self._store.put((symbol.upper(), timeframe), list(patterns))

    def detect(self, symbol: str, timeframe: Timeframe) -> list[Pattern]:
        patterns = self._store.get((symbol.upper(), timeframe))
        if patterns is None:
            raise SourceUnavailableError("pattern", f"no pattern scan for {symbol} {timeframe.value}")
        return list(patterns)


class InMemorySentiment(SentimentService):
    def __init__(self) -> None:
        self._store = _Store()

    def set(self, symbol: str, reading: SentimentReading) -> None:
        self._store.put(symbol.upper(), reading)

    def score(self, symbol: str) -> SentimentReading:
        reading = self._store.get(symbol.upper())
        if reading is None:
            raise SourceUnavailableError("sentiment", f"no sentiment for {symbol}")
        return reading


class InMemoryPredictions(MLPredictionService):
    def __init__(self) -> None:
        self._store = _Store()

    def set(self, symbol: str, horizon: Timeframe, prediction: MLPrediction) -> None:
        self._store.put((symbol.upper(), horizon), prediction)

    def predict(self, symbol: str, horizon: Timeframe) -> MLPrediction:
        prediction = self._store.get((symbol.upper(), horizon))
        if prediction is None:
            raise SourceUnavailableError("ml_model", f"no prediction for {symbol} {horizon.value}")
        return prediction


class InMemoryVolume(VolumeAnalysisService):
    def __init__(self) -> None:
        self._store = _Store()

    def set(self, symbol: str, timeframe: Timeframe, profile: VolumeProfile) -> None:
        self._store.put((symbol.upper(), timeframe), profile)

    def analyze(self, symbol: str, timeframe: Timeframe) -> VolumeProfile:
        profile = self._store.get((symbol.upper(), timeframe))
        if profile is None:
            raise SourceUnavailableError("volume", f"no volume profile for {symbol} {timeframe.value}")
        return profile


class InMemoryPortfolios(PortfolioContextProvider):
    """Risk contexts by portfolio id."""

    def __init__(self) -> None:
        self._store = _Store()

    def set(self, portfolio_id: str, context: RiskContext) -> None:
        self._store.put(portfolio_id, context)

    def get_risk_context(self, portfolio_id: str) -> RiskContext:
        context = self._store.get(portfolio_id)
        if context is None:
            raise PortfolioNotFoundError(portfolio_id)
        return context


class MarketCollaborators:
    """Bundle of every in-memory collaborator, seedable from a fixture."""

    def __init__(self) -> None:
        self.market_data = InMemoryMarketData()
        self.indicators = InMemoryIndicators()
        self.patterns = InMemoryPatterns()
        self.sentiment = InMemorySentiment()
        self.predictions = InMemoryPredictions()
        self.volume = InMemoryVolume()
        self.portfolios = InMemoryPortfolios()

    def load(self, data: dict) -> None:
        """Seed every collaborator from a fixture mapping (see module docstring)."""
        for symbol, q in data.get("quotes", {}).items():
            self.market_data.set_quote(
                Quote(symbol=symbol.upper(), price=float(q["price"]),
                      volume=float(q.get("volume", 0.0)), atr=float(q["atr"]))
            )
        for symbol, by_tf in data.get("indicators", {}).items():
            for label, ind in by_tf.items():
                self.indicators.set(
                    IndicatorSet(
                        symbol=symbol.upper(),
                        timeframe=Timeframe.parse(label),
                        rsi=ind.get("rsi"),
                        macd_histogram=ind.get("macd_histogram"),
                        bollinger_percent_b=ind.get("bollinger_percent_b"),
                        calibration=float(ind.get("calibration", 0.5)),
                    )
                )
        for symbol, by_tf in data.get("patterns", {}).items():
            for label, items in by_tf.items():
                self.patterns.set(
                    symbol,
                    Timeframe.parse(label),
                    [
                        Pattern(
                            name=p["name"],
                            direction=Direction(p["direction"]),
                            reliability=float(p["reliability"]),
                            completion=float(p.get("completion", 1.0)),
                        )
                        for p in items
                    ],
                )
        for symbol, s in data.get("sentiment", {}).items():
            self.sentiment.set(
                symbol, SentimentReading(score=float(s["score"]), confidence=float(s["confidence"]))
            )
        for symbol, by_tf in data.get("predictions", {}).items():
            for label, p in by_tf.items():
                self.predictions.set(
                    symbol,
                    Timeframe.parse(label),
                    MLPrediction(direction=Direction(p["direction"]),
                                 probability=float(p["probability"])),
                )
        for symbol, by_tf in data.get("volume", {}).items():
            for label, v in by_tf.items():
                self.volume.set(
                    symbol,
                    Timeframe.parse(label),
                    VolumeProfile(
                        price=float(v["price"]),
                        support=float(v["support"]),
                        resistance=float(v["resistance"]),
                        relative_volume=float(v.get("relative_volume", 1.0)),
                    ),
                )
        for portfolio_id, r in data.get("portfolios", {}).items():
            self.portfolios.set(
                portfolio_id,
                RiskContext(
                    available_risk_budget_pct=float(r["available_risk_budget_pct"]),
                    max_position_pct=float(r["max_position_pct"]),
                    open_correlated_exposure_pct=float(r.get("open_correlated_exposure_pct", 0.0)),
                ),
            )

    @classmethod
    def from_file(cls, path: Optional[str]) -> "MarketCollaborators":
        collaborators = cls()
        if path:
            logger.info("Seeding market collaborators from %s", path)
            collaborators.load(json.loads(Path(path).read_text(encoding="utf-8")))
        return collaborators
