"""
Tests for the recommendation engine pipeline.

Covers the end-to-end scenarios (conflicting sources, total timeout,
exhausted risk budget), graceful degradation and a seeded fuzz of the
level ordering and risk/reward invariants.
"""

import random
from uuid import UUID

import pytest

from app.domain.recommendation.assembler import RecommendationAssembler
from app.domain.recommendation.engine import EvaluationInput, RecommendationEngine
from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    ConflictKind,
    Direction,
    SourceFailure,
    Timeframe,
)

from helpers import (
    NOW,
    equal_snapshot,
    make_quote,
    make_risk,
    make_signal,
    make_snapshot,
)

VOTING = ("technical", "pattern", "sentiment", "ml_model", "volume")


def _input(signals, snapshot=None, quote=None, risk=None, timeframes=(Timeframe.H1,),
           failures=(), expected=0):
    return EvaluationInput(
        symbol="AAPL",
        timeframes=tuple(timeframes),
        signals=tuple(signals),
        snapshot=snapshot or equal_snapshot(*VOTING),
        timestamp=NOW,
        quote=quote,
        risk_context=risk,
        failures=tuple(failures),
        expected_sources=expected,
    )


def _timeout(source):
    return SourceFailure(source=source, timeframe=Timeframe.H1, reason="timed out", timed_out=True)


@pytest.fixture
def engine() -> RecommendationEngine:
    return RecommendationEngine(EngineConfig())


# =====================================================================
# Scenarios
# =====================================================================

class TestEngineScenarios:
    """Reference scenarios for the fusion pipeline."""

    def test_conflicting_sources_majority_buy_non_aggressive(self, engine):
        """Technical and ML say BUY, sentiment says SELL, equal weights."""
        signals = [
            make_signal("technical", Direction.BUY, 0.8, 0.7),
            make_signal("ml_model", Direction.BUY, 0.6, 0.6),
            make_signal("sentiment", Direction.SELL, 0.9, 0.5),
        ]
        snapshot = equal_snapshot("technical", "ml_model", "sentiment")
        full_engine = RecommendationEngine(EngineConfig(moderate_consensus_size_multiplier=1.0))

        rec = engine.evaluate(_input(signals, snapshot, make_quote(), make_risk()))
        uncapped = full_engine.evaluate(_input(signals, snapshot, make_quote(), make_risk()))

        assert rec.action is Action.BUY
        assert rec.magnitude == pytest.approx(0.5 / 3)
        assert any(c.kind is ConflictKind.OPPOSING_DIRECTION for c in rec.conflicts)
        assert any("sentiment" in r and "dissent" in r for r in rec.reasoning)
        assert rec.position_size_pct == pytest.approx(uncapped.position_size_pct * 0.5)
        assert rec.stop_loss < rec.entry_price < rec.take_profit

    def test_all_sources_timed_out_yields_watch(self, engine):
        failures = [_timeout(s) for s in ("technical", "pattern", "sentiment", "ml_model")]

        rec = engine.evaluate(
            _input([], quote=make_quote(), risk=make_risk(), failures=failures, expected=4)
        )

        assert rec.action is Action.WATCH
        assert rec.confidence == 0.0
        assert rec.position_size_pct == 0.0
        assert rec.reasoning == ("low confidence: insufficient data (0/4 sources responded)",)
        assert set(rec.failed_sources) == {"technical", "pattern", "sentiment", "ml_model"}

    def test_zero_risk_budget_yields_watch_with_zero_size(self, engine):
        signals = [make_signal(s, Direction.BUY, 0.8, 0.9) for s in VOTING]

        rec = engine.evaluate(_input(signals, quote=make_quote(), risk=make_risk(budget=0.0)))

        assert rec.action is Action.WATCH
        assert rec.position_size_pct == 0.0
        assert any("downgraded to WATCH with zero size" in r for r in rec.reasoning)


# =====================================================================
# Degradation and policy
# =====================================================================

class TestEngineDegradation:
    """Tests for partial responses and downgrade paths."""

    def test_single_responder_is_capped(self, engine):
        failures = [_timeout(s) for s in ("pattern", "sentiment", "ml_model")]

        rec = engine.evaluate(
            _input(
                [make_signal("technical", Direction.BUY, 1.0, 1.0)],
                quote=make_quote(),
                risk=make_risk(),
                failures=failures,
                expected=4,
            )
        )

        assert rec.confidence <= 0.6
        assert rec.failed_sources == ("ml_model", "pattern", "sentiment")
        assert any("excluded unresponsive sources" in r for r in rec.reasoning)

    def test_missing_quote_downgrades_trade(self, engine):
        signals = [make_signal(s, Direction.BUY, 0.8, 0.9) for s in VOTING]

        rec = engine.evaluate(_input(signals, quote=None, risk=make_risk()))

        assert rec.action is Action.WATCH
        assert rec.entry_price is None
        assert any("market data unavailable" in r for r in rec.reasoning)

    def test_risk_override_veto_is_hold(self, engine):
        signals = [make_signal(s, Direction.BUY, 0.8, 0.9) for s in VOTING]
        signals.append(make_signal("risk_override", Direction.SELL, 0.8))

        rec = engine.evaluate(_input(signals, quote=make_quote(), risk=make_risk()))

        assert rec.action is Action.HOLD
        assert rec.position_size_pct == 0.0
        assert any(r.startswith("BUY vetoed by risk override") for r in rec.reasoning)

    def test_urgent_hold_surfaces_as_watch(self, engine):
        """Short timeframe pushes hard while the long timeframe cancels it out."""
        signals = [
            make_signal("technical", Direction.BUY, 0.9, timeframe=Timeframe.M1),
            make_signal("ml_model", Direction.SELL, 0.18, timeframe=Timeframe.W1),
            make_signal("pattern", Direction.SELL, 0.18, timeframe=Timeframe.W1),
        ]

        rec = engine.evaluate(
            _input(
                signals,
                quote=make_quote(),
                risk=make_risk(),
                timeframes=(Timeframe.M1, Timeframe.W1),
            )
        )

        assert rec.action is Action.WATCH
        assert rec.timeframe is Timeframe.W1
        assert any("urgency" in r for r in rec.reasoning)

    def test_deterministic_for_identical_input(self):
        fixed = UUID(int=42)
        config = EngineConfig()
        engine = RecommendationEngine(
            config, assembler=RecommendationAssembler(config, id_factory=lambda: fixed)
        )
        signals = [
            make_signal("technical", Direction.BUY, 0.7, 0.8, timeframe=Timeframe.H1),
            make_signal("sentiment", Direction.SELL, 0.4, 0.6, timeframe=Timeframe.H1),
            make_signal("volume", Direction.BUY, 0.5, 0.7, timeframe=Timeframe.D1),
        ]
        request = _input(
            signals,
            quote=make_quote(),
            risk=make_risk(),
            timeframes=(Timeframe.H1, Timeframe.D1),
        )

        first = engine.evaluate(request)
        second = engine.evaluate(
            _input(
                list(reversed(signals)),
                quote=make_quote(),
                risk=make_risk(),
                timeframes=(Timeframe.H1, Timeframe.D1),
            )
        )

        assert first == second


# =====================================================================
# Seeded fuzz
# =====================================================================

class TestEngineInvariants:
    """Random inputs never break the published-level invariants."""

    def test_seeded_fuzz_preserves_ordering_and_floor(self):
        rng = random.Random(20260105)
        directions = list(Direction)
        timeframes = list(Timeframe)

        for _ in range(300):
            config = EngineConfig(target_risk_reward=rng.choice([1.5, 2.0, 3.0]))
            engine = RecommendationEngine(config)
            tfs = rng.sample(timeframes, rng.randint(1, 3))
            signals = [
                make_signal(s, rng.choice(directions), rng.random(), rng.random(), timeframe=tf)
                for s in VOTING + ("risk_override",)
                for tf in tfs
                if rng.random() < 0.8
            ]
            price = rng.uniform(0.5, 500.0)
            quote = make_quote(price=price, atr=price * rng.uniform(0.001, 0.3))
            risk = make_risk(
                budget=rng.uniform(0.0, 30.0),
                max_position=rng.uniform(0.0, 15.0),
                exposure=rng.uniform(0.0, 20.0),
            )
            snapshot = make_snapshot({s: rng.random() for s in VOTING})

            rec = engine.evaluate(_input(signals, snapshot, quote, risk, timeframes=tfs))

            assert rec.reasoning
            assert 0.0 <= rec.confidence <= 1.0
            if rec.action is Action.BUY:
                assert rec.stop_loss < rec.entry_price < rec.take_profit
            elif rec.action is Action.SELL:
                assert rec.take_profit < rec.entry_price < rec.stop_loss
            else:
                assert rec.position_size_pct == 0.0
                continue
            assert rec.position_size_pct > 0.0
            assert rec.risk_reward_ratio + 1e-9 >= config.min_risk_reward
            assert rec.position_size_pct <= risk.max_position_pct + 1e-9
