"""
Engine configuration value object.

Plain frozen dataclass consumed by the domain services. Built from
``app.core.config.FusionSettings`` at the composition root so that the
domain layer stays free of framework imports. Defaults mirror the
settings defaults, which keeps domain unit tests configuration-free.
"""

from dataclasses import dataclass, field

from app.domain.recommendation.entities import Timeframe


def _conviction_defaults() -> dict[Timeframe, float]:
    return {
        Timeframe.M1: 0.5,
        Timeframe.M5: 0.75,
        Timeframe.M15: 1.0,
        Timeframe.H1: 1.25,
        Timeframe.H4: 1.5,
        Timeframe.D1: 2.0,
        Timeframe.W1: 2.5,
    }


def _urgency_defaults() -> dict[Timeframe, float]:
    return {
        Timeframe.M1: 2.5,
        Timeframe.M5: 2.0,
        Timeframe.M15: 1.5,
        Timeframe.H1: 1.25,
        Timeframe.H4: 1.0,
        Timeframe.D1: 0.75,
        Timeframe.W1: 0.5,
    }


def _ttl_defaults() -> dict[Timeframe, float]:
    return {
        Timeframe.M1: 300,
        Timeframe.M5: 900,
        Timeframe.M15: 2_700,
        Timeframe.H1: 14_400,
        Timeframe.H4: 43_200,
        Timeframe.D1: 172_800,
        Timeframe.W1: 1_209_600,
    }


@dataclass(frozen=True)
class EngineConfig:
    """All tunable parameters of the fusion pipeline.

    Attributes:
        deadline_ms: End-to-end fan-out deadline per evaluation.
        min_sources: Minimum number of voting sources that must respond.
        hold_epsilon: |magnitude| below this maps to HOLD.
        timeframe_conviction_weights: Cross-timeframe weights for the
            directional score (longer timeframes weigh more).
        timeframe_urgency_weights: Cross-timeframe weights for urgency
            (shorter timeframes weigh more).
        watch_urgency_threshold: Urgency at which a HOLD surfaces as WATCH.
        opposing_strength_threshold: Both signals must exceed this
            strength to count as an OPPOSING_DIRECTION conflict.
        min_consensus: Below this fraction the conflict is unresolved.
        strong_consensus: At or above this fraction dissent is discounted.
        dissent_discount: Weight multiplier applied to dissenting sources
            when computing confidence under strong consensus.
        unresolved_conflict_penalty: Fractional confidence penalty for
            an unresolved conflict.
        risk_override_sources: Source ids with BUY veto power.
        risk_override_min_strength: Strength at which an override fires.
        single_source_confidence_ceiling: Confidence cap with one source.
        kelly_fraction: Fractional Kelly multiplier for sizing.
        stop_atr_multiple: Stop distance in ATR units.
        target_risk_reward: Reward/risk used to place the take-profit.
        min_risk_reward: Floor below which actions downgrade to WATCH.
        moderate_consensus_size_multiplier: Size multiplier applied when
            consensus falls in the moderate band.
        timeframe_ttl_seconds: Recommendation lifetime per timeframe.
        ema_alpha: Smoothing factor of the per-source accuracy EMA.
        initial_accuracy: Starting accuracy EMA for every source.
        hold_return_band: |realized return| within which HOLD is correct.
    """

    deadline_ms: int = 150
    min_sources: int = 1
    hold_epsilon: float = 0.1
    timeframe_conviction_weights: dict[Timeframe, float] = field(
        default_factory=_conviction_defaults
    )
    timeframe_urgency_weights: dict[Timeframe, float] = field(
        default_factory=_urgency_defaults
    )
    watch_urgency_threshold: float = 0.5
    opposing_strength_threshold: float = 0.5
    min_consensus: float = 0.6
    strong_consensus: float = 0.8
    dissent_discount: float = 0.5
    unresolved_conflict_penalty: float = 0.5
    risk_override_sources: frozenset[str] = frozenset({"risk_override"})
    risk_override_min_strength: float = 0.5
    single_source_confidence_ceiling: float = 0.6
    kelly_fraction: float = 0.25
    stop_atr_multiple: float = 1.5
    target_risk_reward: float = 2.0
    min_risk_reward: float = 2.0
    moderate_consensus_size_multiplier: float = 0.5
    timeframe_ttl_seconds: dict[Timeframe, float] = field(
        default_factory=_ttl_defaults
    )
    ema_alpha: float = 0.1
    initial_accuracy: float = 0.5
    hold_return_band: float = 0.002

    def is_risk_override(self, source: str) -> bool:
        """Return True if the source only carries veto power."""
        return source in self.risk_override_sources

    def ttl_for(self, timeframe: Timeframe) -> float:
        """Return the recommendation lifetime in seconds for a timeframe."""
        return float(self.timeframe_ttl_seconds.get(timeframe, timeframe.seconds))
