"""
Use case: Generate a recommendation for one symbol.

Input: GenerateRecommendationCommand (symbol, timeframes, portfolio_id, deadline_ms)
Output: RecommendationResult
Side effects: Persists the recommendation, starts outcome tracking and
    publishes it to stream subscribers. The portfolio lookup, the quote
    and the signal fan-out all share one deadline.
Failure cases: InvalidTimeframeError, PortfolioNotFoundError,
    EvaluationCancelledError, InternalInvariantViolationError.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.application.recommendation.dtos import (
    GenerateRecommendationCommand,
    RecommendationResult,
    recommendation_result,
)
from app.application.recommendation.signal_collector import (
    CancellationToken,
    SignalCollector,
)
from app.domain.recommendation.engine import EvaluationInput, RecommendationEngine
from app.domain.recommendation.entities import Quote, Recommendation, RiskContext, Timeframe
from app.domain.recommendation.errors import (
    EvaluationCancelledError,
    InvalidTimeframeError,
    MarketDataUnavailableError,
)
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker
from app.domain.recommendation.ports import (
    MarketDataProvider,
    PortfolioContextProvider,
    RecommendationPublisher,
    RecommendationRepository,
)

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timeframes(labels: tuple[str, ...]) -> tuple[Timeframe, ...]:
    """Parse and de-duplicate timeframe labels, keeping request order.

    Raises:
        InvalidTimeframeError: If a label is unknown or none are given.
    """
    if not labels:
        raise InvalidTimeframeError("<empty>")
    parsed: list[Timeframe] = []
    for label in labels:
        timeframe = Timeframe.parse(label)
        if timeframe not in parsed:
            parsed.append(timeframe)
    return tuple(parsed)


class GenerateRecommendationUseCase:
    """Orchestrates fan-out, fusion and publication for one symbol.

    Reads the weight snapshot before fan-out so a concurrent feedback
    update never changes the weights mid-evaluation, and keeps
    recommendation timestamps strictly increasing per symbol.
    """

    def __init__(
        self,
        engine: RecommendationEngine,
        collector: SignalCollector,
        tracker: PerformanceFeedbackTracker,
        market_data: MarketDataProvider,
        portfolio_provider: PortfolioContextProvider,
        repository: RecommendationRepository,
        default_risk_context: RiskContext,
        publisher: Optional[RecommendationPublisher] = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._collector = collector
        self._tracker = tracker
        self._market_data = market_data
        self._portfolio_provider = portfolio_provider
        self._repository = repository
        self._default_risk_context = default_risk_context
        self._publisher = publisher
        self._clock = clock
        self._monotonic = monotonic
        self._last_timestamp: dict[str, datetime] = {}
        self._timestamp_lock = threading.Lock()

    async def execute(
        self,
        command: GenerateRecommendationCommand,
        token: Optional[CancellationToken] = None,
    ) -> RecommendationResult:
        """Run the generate-recommendation use case.

        Args:
            command: The evaluation request.
            token: Optional cancellation token (client disconnect).

        Returns:
            The published recommendation.

        Raises:
            InvalidTimeframeError: If a timeframe label is unknown.
            PortfolioNotFoundError: If the portfolio id is unknown.
            EvaluationCancelledError: If cancelled before fan-in.
            InternalInvariantViolationError: On a logic defect.
        """
        recommendation = await self.evaluate(command, token)
        return recommendation_result(recommendation)

    async def evaluate(
        self,
        command: GenerateRecommendationCommand,
        token: Optional[CancellationToken] = None,
    ) -> Recommendation:
        """Same as ``execute`` but returns the domain entity."""
        symbol = command.symbol.strip().upper()
        timeframes = parse_timeframes(command.timeframes)

        snapshot = self._tracker.snapshot
        deadline_ms = command.deadline_ms or self._engine.config.deadline_ms
        deadline = self.deadline_for(command)

        logger.info(
            "Evaluating %s on %s (deadline=%dms, weights v%d)",
            symbol,
            ",".join(tf.value for tf in timeframes),
            deadline_ms,
            snapshot.version,
        )

        risk_task = asyncio.create_task(self.resolve_risk_context(command, deadline))
        quote_task = asyncio.create_task(self._fetch_quote(symbol, deadline))
        try:
            collection = await self._collector.collect(symbol, timeframes, deadline, token)
        except EvaluationCancelledError:
            risk_task.cancel()
            quote_task.cancel()
            await asyncio.gather(risk_task, quote_task, return_exceptions=True)
            raise
        risk_context, quote = await asyncio.gather(risk_task, quote_task)

        recommendation = self._engine.evaluate(
            EvaluationInput(
                symbol=symbol,
                timeframes=timeframes,
                signals=collection.signals,
                snapshot=snapshot,
                timestamp=self._next_timestamp(symbol),
                quote=quote,
                risk_context=risk_context,
                failures=collection.failures,
                expected_sources=collection.expected_sources,
            )
        )

        self._repository.save(recommendation)
        self._tracker.track(recommendation)
        if self._publisher is not None:
            await self._publisher.publish(recommendation)
        return recommendation

    def deadline_for(self, command: GenerateRecommendationCommand) -> float:
        """Monotonic instant by which the evaluation must fan in."""
        deadline_ms = command.deadline_ms or self._engine.config.deadline_ms
        return self._monotonic() + deadline_ms / 1000.0

    async def resolve_risk_context(
        self,
        command: GenerateRecommendationCommand,
        deadline: Optional[float] = None,
    ) -> Optional[RiskContext]:
        """Pick the inline risk context, the portfolio's, or the default.

        A portfolio lookup that misses ``deadline`` yields None, which the
        engine downgrades to WATCH.

        Raises:
            PortfolioNotFoundError: If the portfolio id is unknown.
        """
        if command.risk_context is not None:
            return command.risk_context
        if not command.portfolio_id:
            return self._default_risk_context

        lookup = asyncio.to_thread(
            self._portfolio_provider.get_risk_context, command.portfolio_id
        )
        if deadline is None:
            return await lookup
        remaining = max(0.0, deadline - self._monotonic())
        try:
            return await asyncio.wait_for(lookup, timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(
                "Risk context for portfolio %s not available before the deadline",
                command.portfolio_id,
            )
            return None

    async def _fetch_quote(self, symbol: str, deadline: float) -> Optional[Quote]:
        remaining = max(0.0, deadline - self._monotonic())
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._market_data.get_quote, symbol), timeout=remaining
            )
        except asyncio.TimeoutError:
            logger.warning("Quote for %s not available before the deadline", symbol)
        except MarketDataUnavailableError as exc:
            logger.warning("Quote for %s unavailable: %s", symbol, exc.reason)
        return None

    def _next_timestamp(self, symbol: str) -> datetime:
        """Return a timestamp strictly after the previous one for ``symbol``."""
        with self._timestamp_lock:
            now = self._clock()
            last = self._last_timestamp.get(symbol)
            if last is not None and now <= last:
                now = last + _TICK
            self._last_timestamp[symbol] = now
            return now
