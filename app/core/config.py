"""
Application configuration.

Loads settings from environment variables and .env file.
All configuration is centralized here: no scattered magic strings.

Two settings classes live here:
- ``Settings``: service-level knobs (logging, rate limits, storage).
- ``FusionSettings``: every numeric parameter of the recommendation
  engine, prefixed ``FUSION_`` in the environment.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import Timeframe


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        rate_limit_default: Default rate limit for all endpoints.
        rate_limit_heavy: Rate limit for compute-heavy endpoints.
        max_request_size_bytes: Maximum allowed request body size.
        database_url: Optional SQLAlchemy URL for the recommendation
            audit store. In-memory storage is used when unset.
        market_fixtures_path: Optional JSON file seeding the in-memory
            market data and analysis collaborators.
        default_available_risk_budget_pct: Risk budget assumed for
            portfolios the context provider has no explicit entry for.
        default_max_position_pct: Max position size for such portfolios.
        outcome_monitor_enabled: Start the background outcome monitor.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    project_name: str = "SignalFusion"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_default: str = "60/minute"
    rate_limit_heavy: str = "10/minute"
    max_request_size_bytes: int = 1_048_576  # 1 MB

    database_url: Optional[str] = None
    market_fixtures_path: Optional[str] = None

    default_available_risk_budget_pct: float = 20.0
    default_max_position_pct: float = 10.0

    outcome_monitor_enabled: bool = True


class FusionSettings(BaseSettings):
    """Numeric parameters of the signal-fusion engine.

    Timeframe-keyed maps use the timeframe labels ("1m", "5m", "15m",
    "1h", "4h", "1d", "1w") and can be overridden from the environment
    as JSON, e.g. ``FUSION_TIMEFRAME_TTL_SECONDS='{"1h": 7200}'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FUSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Fan-out ---
    deadline_ms: int = Field(default=150, gt=0)
    min_sources: int = Field(default=1, ge=1)
    bulk_concurrency: int = Field(default=8, ge=1)

    # --- Fusion ---
    hold_epsilon: float = Field(default=0.1, ge=0.0, le=1.0)
    timeframe_conviction_weights: dict[str, float] = {
        "1m": 0.5,
        "5m": 0.75,
        "15m": 1.0,
        "1h": 1.25,
        "4h": 1.5,
        "1d": 2.0,
        "1w": 2.5,
    }
    timeframe_urgency_weights: dict[str, float] = {
        "1m": 2.5,
        "5m": 2.0,
        "15m": 1.5,
        "1h": 1.25,
        "4h": 1.0,
        "1d": 0.75,
        "1w": 0.5,
    }
    watch_urgency_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # --- Conflict resolution ---
    opposing_strength_threshold: float = 0.5
    min_consensus: float = 0.6
    strong_consensus: float = 0.8
    dissent_discount: float = Field(default=0.5, ge=0.0, le=1.0)
    unresolved_conflict_penalty: float = Field(default=0.5, ge=0.0, le=1.0)
    risk_override_sources: list[str] = ["risk_override"]
    risk_override_min_strength: float = 0.5

    # --- Uncertainty ---
    single_source_confidence_ceiling: float = Field(default=0.6, ge=0.0, le=1.0)

    # --- Sizing ---
    kelly_fraction: float = Field(default=0.25, gt=0.0, le=1.0)
    stop_atr_multiple: float = Field(default=1.5, gt=0.0)
    target_risk_reward: float = Field(default=2.0, gt=0.0)
    min_risk_reward: float = Field(default=2.0, gt=0.0)
    moderate_consensus_size_multiplier: float = Field(default=0.5, ge=0.0, le=1.0)

    # --- Lifecycle & feedback ---
    timeframe_ttl_seconds: dict[str, int] = {
        "1m": 300,
        "5m": 900,
        "15m": 2_700,
        "1h": 14_400,
        "4h": 43_200,
        "1d": 172_800,
        "1w": 1_209_600,
    }
    ema_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    initial_accuracy: float = Field(default=0.5, ge=0.0, le=1.0)
    hold_return_band: float = Field(default=0.002, ge=0.0)
    outcome_poll_seconds: float = Field(default=30.0, gt=0.0)

    # --- Source normalization ---
    volatility_spike_ratio: float = Field(default=0.05, gt=0.0)
    sentiment_neutral_band: float = Field(default=0.05, ge=0.0, le=1.0)

    # --- Streaming ---
    stream_queue_size: int = Field(default=100, ge=1)

    def to_engine_config(self) -> EngineConfig:
        """Build the immutable engine configuration used by the domain layer."""
        return EngineConfig(
            deadline_ms=self.deadline_ms,
            min_sources=self.min_sources,
            hold_epsilon=self.hold_epsilon,
            timeframe_conviction_weights=_by_timeframe(
                self.timeframe_conviction_weights
            ),
            timeframe_urgency_weights=_by_timeframe(self.timeframe_urgency_weights),
            watch_urgency_threshold=self.watch_urgency_threshold,
            opposing_strength_threshold=self.opposing_strength_threshold,
            min_consensus=self.min_consensus,
            strong_consensus=self.strong_consensus,
            dissent_discount=self.dissent_discount,
            unresolved_conflict_penalty=self.unresolved_conflict_penalty,
            risk_override_sources=frozenset(self.risk_override_sources),
            risk_override_min_strength=self.risk_override_min_strength,
            single_source_confidence_ceiling=self.single_source_confidence_ceiling,
            kelly_fraction=self.kelly_fraction,
            stop_atr_multiple=self.stop_atr_multiple,
            target_risk_reward=self.target_risk_reward,
            min_risk_reward=self.min_risk_reward,
            moderate_consensus_size_multiplier=self.moderate_consensus_size_multiplier,
            timeframe_ttl_seconds=_by_timeframe(self.timeframe_ttl_seconds),
            ema_alpha=self.ema_alpha,
            initial_accuracy=self.initial_accuracy,
            hold_return_band=self.hold_return_band,
        )


def _by_timeframe(values: dict[str, float]) -> dict[Timeframe, float]:
    """Key a label-indexed map by Timeframe, rejecting unknown labels."""
    return {Timeframe.parse(label): value for label, value in values.items()}


settings = Settings()
fusion_settings = FusionSettings()
