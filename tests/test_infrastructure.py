"""
Tests for the recommendation infrastructure adapters.

Covers signal source normalization and deadlines, fixture-seeded
collaborators, the audit repositories (in-memory and SQLAlchemy over
SQLite) and the outcome monitor.
"""

import json
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.application.recommendation.record_outcome import RecordOutcomeUseCase
from app.domain.recommendation.engine import EvaluationInput, RecommendationEngine
from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    Direction,
    IndicatorSet,
    MLPrediction,
    OutcomeState,
    Pattern,
    PerformanceSample,
    SentimentReading,
    SourceKind,
    Timeframe,
    VolumeProfile,
)
from app.domain.recommendation.errors import (
    MarketDataUnavailableError,
    PortfolioNotFoundError,
    SourceTimeoutError,
    SourceUnavailableError,
)
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker
from app.infrastructure.recommendation.collaborators import MarketCollaborators
from app.infrastructure.recommendation.outcome_monitor import OutcomeMonitor
from app.infrastructure.recommendation.recommendation_repository import (
    InMemoryRecommendationRepository,
    SqlRecommendationRepository,
)
from app.infrastructure.recommendation.signal_sources import (
    MLModelSource,
    PatternSource,
    RiskOverrideSource,
    SentimentSource,
    TechnicalSource,
    VolumeSource,
)

from helpers import (
    NOW,
    equal_snapshot,
    make_quote,
    make_recommendation,
    make_risk,
    make_signal,
)

H1 = Timeframe.H1


def _deadline(seconds: float = 2.0) -> float:
    return time.monotonic() + seconds


@pytest.fixture
def market() -> MarketCollaborators:
    return MarketCollaborators()


# =====================================================================
# Signal sources
# =====================================================================

class TestSignalSources:
    """Tests for collaborator-to-signal normalization."""

    @pytest.mark.asyncio
    async def test_technical_rsi_overbought(self, market):
        market.indicators.set(IndicatorSet("AAPL", H1, rsi=80.0, calibration=0.7))

        signal = await TechnicalSource(market.indicators).fetch("AAPL", H1, _deadline())

        assert signal.kind is SourceKind.TECHNICAL
        assert signal.direction is Direction.SELL
        assert signal.strength == pytest.approx(1 / 3)
        assert signal.confidence == 0.7
        assert "overbought" in signal.explanation

    @pytest.mark.asyncio
    async def test_technical_macd_and_bollinger_vote(self, market):
        market.indicators.set(
            IndicatorSet("AAPL", H1, rsi=50.0, macd_histogram=0.5, bollinger_percent_b=-0.2)
        )

        signal = await TechnicalSource(market.indicators).fetch("AAPL", H1, _deadline())

        assert signal.direction is Direction.BUY
        assert 0.0 < signal.strength < 1.0

    @pytest.mark.asyncio
    async def test_pattern_net_vote(self, market):
        market.patterns.set(
            "AAPL",
            H1,
            [Pattern("double_top", Direction.SELL, 0.6), Pattern("flag", Direction.BUY, 0.3)],
        )

        signal = await PatternSource(market.patterns).fetch("AAPL", H1, _deadline())

        assert signal.direction is Direction.SELL
        assert signal.strength == pytest.approx(0.3)
        assert signal.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_no_patterns_is_hold(self, market):
        market.patterns.set("AAPL", H1, [])

        signal = await PatternSource(market.patterns).fetch("AAPL", H1, _deadline())

        assert signal.direction is Direction.HOLD
        assert signal.strength == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "score,direction",
        [(0.03, Direction.HOLD), (-0.4, Direction.SELL), (0.6, Direction.BUY)],
    )
    async def test_sentiment_neutral_band(self, market, score, direction):
        market.sentiment.set("AAPL", SentimentReading(score=score, confidence=0.5))

        signal = await SentimentSource(market.sentiment, neutral_band=0.05).fetch(
            "AAPL", Timeframe.D1, _deadline()
        )

        assert signal.direction is direction
        assert signal.strength == pytest.approx(abs(score))
        assert signal.timeframe is Timeframe.D1

    @pytest.mark.asyncio
    async def test_ml_probability_maps_to_strength(self, market):
        market.predictions.set("AAPL", H1, MLPrediction(Direction.BUY, 0.7))

        signal = await MLModelSource(market.predictions).fetch("AAPL", H1, _deadline())

        assert signal.direction is Direction.BUY
        assert signal.strength == pytest.approx(0.4)
        assert signal.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_volume_breakdown_and_range(self, market):
        source = VolumeSource(market.volume)
        market.volume.set("AAPL", H1, VolumeProfile(85.0, 90.0, 100.0, 2.0))
        breakdown = await source.fetch("AAPL", H1, _deadline())

        market.volume.set("AAPL", H1, VolumeProfile(95.0, 90.0, 100.0, 1.0))
        middle = await source.fetch("AAPL", H1, _deadline())

        assert breakdown.direction is Direction.SELL
        assert breakdown.strength == pytest.approx(1.0)
        assert middle.direction is Direction.HOLD

    @pytest.mark.asyncio
    async def test_volume_inverted_range_is_unavailable(self, market):
        market.volume.set("AAPL", H1, VolumeProfile(95.0, 100.0, 90.0, 1.0))

        with pytest.raises(SourceUnavailableError):
            await VolumeSource(market.volume).fetch("AAPL", H1, _deadline())

    @pytest.mark.asyncio
    async def test_risk_override_fires_on_volatility_spike(self, market):
        source = RiskOverrideSource(market.market_data, spike_ratio=0.05)
        market.market_data.set_quote(make_quote(price=100.0, atr=6.0))
        spike = await source.fetch("AAPL", H1, _deadline())

        market.market_data.set_quote(make_quote(price=100.0, atr=1.0))
        calm = await source.fetch("AAPL", H1, _deadline())

        assert spike.direction is Direction.SELL
        assert spike.strength == pytest.approx(0.6)
        assert calm.direction is Direction.HOLD
        assert calm.strength < 0.5

    @pytest.mark.asyncio
    async def test_missing_reading_is_unavailable(self, market):
        with pytest.raises(SourceUnavailableError):
            await MLModelSource(market.predictions).fetch("AAPL", H1, _deadline())

    @pytest.mark.asyncio
    async def test_passed_deadline_times_out_immediately(self, market):
        with pytest.raises(SourceTimeoutError):
            await TechnicalSource(market.indicators).fetch("AAPL", H1, time.monotonic() - 1.0)

    @pytest.mark.asyncio
    async def test_blocking_service_is_abandoned_at_deadline(self):
        service = MagicMock()
        service.compute.side_effect = lambda symbol, timeframe: time.sleep(0.3)

        started = time.monotonic()
        with pytest.raises(SourceTimeoutError):
            await TechnicalSource(service).fetch("AAPL", H1, started + 0.05)

        assert time.monotonic() - started < 0.25

    @pytest.mark.asyncio
    async def test_unexpected_service_error_is_wrapped(self):
        service = MagicMock()
        service.score.side_effect = ConnectionError("feed down")

        with pytest.raises(SourceUnavailableError, match="feed down"):
            await SentimentSource(service).fetch("AAPL", H1, _deadline())


# =====================================================================
# Collaborators
# =====================================================================

class TestMarketCollaborators:
    """Tests for fixture-seeded in-memory collaborators."""

    FIXTURE = {
        "quotes": {"aapl": {"price": 190.0, "volume": 1e6, "atr": 2.5}},
        "indicators": {"AAPL": {"1h": {"rsi": 75, "calibration": 0.7}}},
        "patterns": {"AAPL": {"1h": [{"name": "double_top", "direction": "SELL",
                                      "reliability": 0.6}]}},
        "sentiment": {"AAPL": {"score": 0.4, "confidence": 0.6}},
        "predictions": {"AAPL": {"1d": {"direction": "BUY", "probability": 0.7}}},
        "volume": {"AAPL": {"1h": {"price": 190, "support": 185, "resistance": 200}}},
        "portfolios": {"main": {"available_risk_budget_pct": 20, "max_position_pct": 10}},
    }

    def test_load_fixture(self, market):
        market.load(self.FIXTURE)

        assert market.market_data.get_quote("AAPL").atr == 2.5
        assert market.indicators.compute("aapl", H1).rsi == 75
        assert market.patterns.detect("AAPL", H1)[0].direction is Direction.SELL
        assert market.predictions.predict("AAPL", Timeframe.D1).probability == 0.7
        assert market.volume.analyze("AAPL", H1).relative_volume == 1.0
        assert market.portfolios.get_risk_context("main").open_correlated_exposure_pct == 0.0

    def test_from_file(self, tmp_path):
        path = tmp_path / "market.json"
        path.write_text(json.dumps(self.FIXTURE), encoding="utf-8")

        market = MarketCollaborators.from_file(str(path))

        assert market.sentiment.score("AAPL").score == 0.4

    def test_missing_entries_raise_domain_errors(self, market):
        with pytest.raises(MarketDataUnavailableError):
            market.market_data.get_quote("MSFT")
        with pytest.raises(PortfolioNotFoundError):
            market.portfolios.get_risk_context("nope")
        with pytest.raises(SourceUnavailableError):
            market.volume.analyze("MSFT", H1)


# =====================================================================
# Repositories
# =====================================================================

def _engine_recommendation(timestamp=NOW):
    """A recommendation with conflicts and signals, as the engine emits it."""
    signals = (
        make_signal("technical", Direction.BUY, 0.8, 0.7),
        make_signal("ml_model", Direction.BUY, 0.6, 0.6),
        make_signal("sentiment", Direction.SELL, 0.9, 0.5),
    )
    return RecommendationEngine(EngineConfig()).evaluate(
        EvaluationInput(
            symbol="AAPL",
            timeframes=(H1,),
            signals=signals,
            snapshot=equal_snapshot("technical", "ml_model", "sentiment"),
            timestamp=timestamp,
            quote=make_quote(),
            risk_context=make_risk(),
        )
    )


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    if request.param == "memory":
        return InMemoryRecommendationRepository()
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    repo = SqlRecommendationRepository(engine)
    repo.ensure_tables()
    repo.ensure_tables()
    return repo


class TestRecommendationRepository:
    """Both repository adapters honour the same contract."""

    def test_round_trip_preserves_audit_trail(self, repository):
        rec = _engine_recommendation()

        repository.save(rec)
        loaded = repository.get(rec.id)

        assert loaded == rec
        assert loaded.conflicts
        assert loaded.contributing_signals == rec.contributing_signals

    def test_unknown_id(self, repository):
        assert repository.get(make_recommendation().id) is None
        assert repository.get_latest("AAPL") is None

    def test_latest_is_newest_by_timestamp(self, repository):
        older = _engine_recommendation(NOW)
        newer = _engine_recommendation(NOW + timedelta(minutes=5))

        repository.save(newer)
        repository.save(older)

        assert repository.get_latest("AAPL").id == newer.id

    def test_samples(self, repository):
        rec = _engine_recommendation()
        repository.save(rec)
        samples = [
            PerformanceSample(rec.id, "technical", True, 0.03, NOW, OutcomeState.TARGET_HIT),
            PerformanceSample(rec.id, "sentiment", False, 0.03, NOW),
        ]

        repository.save_samples(samples)
        repository.save_samples([])

        loaded = sorted(repository.list_samples(rec.id), key=lambda s: s.source)
        assert loaded == sorted(samples, key=lambda s: s.source)


# =====================================================================
# Outcome monitor
# =====================================================================

class TestOutcomeMonitor:
    """Tests for quote polling over open recommendations."""

    def _wire(self, market):
        tracker = PerformanceFeedbackTracker(
            EngineConfig(), ("technical", "ml_model"), clock=lambda: NOW
        )
        repository = InMemoryRecommendationRepository()
        monitor = OutcomeMonitor(
            tracker,
            market.market_data,
            RecordOutcomeUseCase(tracker, repository, clock=lambda: NOW),
            interval_seconds=60,
            clock=lambda: NOW,
        )
        return tracker, repository, monitor

    def _publish(self, tracker, repository, symbol="AAPL"):
        rec = make_recommendation(
            Action.BUY,
            symbol=symbol,
            signals=(make_signal("technical", Direction.BUY, 0.7, symbol=symbol),),
        )
        repository.save(rec)
        tracker.track(rec)
        return rec

    def test_run_once_resolves_target_hit(self, market):
        tracker, repository, monitor = self._wire(market)
        rec = self._publish(tracker, repository)
        market.market_data.set_quote(make_quote(price=107.0))

        result = monitor.run_once()

        assert result.checked == 1
        assert result.transitions == {"TARGET_HIT": 1}
        assert tracker.state_of(rec.id) is OutcomeState.TARGET_HIT
        assert tracker.snapshot.version == 2

    def test_open_recommendation_stays_open(self, market):
        tracker, repository, monitor = self._wire(market)
        self._publish(tracker, repository)
        market.market_data.set_quote(make_quote(price=101.0))

        result = monitor.run_once()

        assert result.transitions == {}
        assert len(tracker.open_recommendations()) == 1

    def test_missing_quote_is_skipped(self, market):
        tracker, repository, monitor = self._wire(market)
        self._publish(tracker, repository, symbol="MSFT")

        result = monitor.run_once()

        assert result.skipped == 1
        status = monitor.get_status()
        assert status["runs"] == 1
        assert status["last_run"]["skipped"] == 1

    def test_start_and_stop(self, market):
        _, _, monitor = self._wire(market)

        monitor.start()
        try:
            assert monitor.is_running is True
            assert monitor.get_status()["running"] is True
        finally:
            monitor.stop()

        assert monitor.is_running is False
