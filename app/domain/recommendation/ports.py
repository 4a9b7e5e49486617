"""
Port interfaces (ABCs) for the recommendation bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from app.domain.recommendation.entities import (
    IndicatorSet,
    MLPrediction,
    Pattern,
    PerformanceSample,
    Quote,
    Recommendation,
    RiskContext,
    SentimentReading,
    Signal,
    SourceId,
    SourceKind,
    Timeframe,
    VolumeProfile,
)


# ------------------------------------------------------------------
# External collaborators
# ------------------------------------------------------------------


class MarketDataProvider(ABC):
    """Port for current price and volatility."""

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """Return the latest quote (price, volume, ATR) for a symbol."""
        raise NotImplementedError


class TechnicalIndicatorService(ABC):
    """Port for technical indicator readings."""

    @abstractmethod
    def compute(self, symbol: str, timeframe: Timeframe) -> IndicatorSet:
        raise NotImplementedError


class PatternRecognitionService(ABC):
    """Port for chart pattern detection."""

    @abstractmethod
    def detect(self, symbol: str, timeframe: Timeframe) -> list[Pattern]:
        raise NotImplementedError


class SentimentService(ABC):
    """Port for aggregated sentiment scores."""

    @abstractmethod
    def score(self, symbol: str) -> SentimentReading:
        raise NotImplementedError


class MLPredictionService(ABC):
    """Port for directional ML model predictions."""

    @abstractmethod
    def predict(self, symbol: str, horizon: Timeframe) -> MLPrediction:
        raise NotImplementedError


class VolumeAnalysisService(ABC):
    """Port for volume and support/resistance analysis."""

    @abstractmethod
    def analyze(self, symbol: str, timeframe: Timeframe) -> VolumeProfile:
        raise NotImplementedError


class PortfolioContextProvider(ABC):
    """Port for a portfolio's current risk budget."""

    @abstractmethod
    def get_risk_context(self, portfolio_id: str) -> RiskContext:
        """Return the risk context of a portfolio.

        Raises:
            PortfolioNotFoundError: If the portfolio is unknown.
        """
        raise NotImplementedError


# ------------------------------------------------------------------
# Signal sources
# ------------------------------------------------------------------


class SignalSource(ABC):
    """Contract shared by every signal source variant.

    A source wraps one analysis domain and normalizes its output into
    a ``Signal``. Implementations must honour the deadline.
    """

    @property
    @abstractmethod
    def source_id(self) -> SourceId:
        raise NotImplementedError

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        raise NotImplementedError

    @abstractmethod
    async def fetch(
        self, symbol: str, timeframe: Timeframe, deadline: float
    ) -> Signal:
        """Return a normalized signal before ``deadline``.

        Args:
            symbol: Ticker symbol.
            timeframe: Analysis timeframe.
            deadline: Absolute ``time.monotonic()`` value.

        Raises:
            SourceTimeoutError: If the domain cannot answer in time.
            SourceUnavailableError: If the domain fails.
        """
        raise NotImplementedError


# ------------------------------------------------------------------
# Persistence and publication
# ------------------------------------------------------------------


class RecommendationRepository(ABC):
    """Port for the recommendation audit store."""

    @abstractmethod
    def save(self, recommendation: Recommendation) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, recommendation_id: UUID) -> Optional[Recommendation]:
        raise NotImplementedError

    @abstractmethod
    def get_latest(self, symbol: str) -> Optional[Recommendation]:
        """Return the most recent recommendation for a symbol, if any."""
        raise NotImplementedError

    @abstractmethod
    def save_samples(self, samples: list[PerformanceSample]) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_samples(self, recommendation_id: UUID) -> list[PerformanceSample]:
        raise NotImplementedError


class RecommendationPublisher(ABC):
    """Port for pushing recommendations to stream subscribers."""

    @abstractmethod
    async def publish(self, recommendation: Recommendation) -> int:
        """Publish a recommendation and return the number of receivers."""
        raise NotImplementedError
