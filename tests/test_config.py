"""
Tests for settings loading and the engine configuration bridge.
"""

import pytest
from pydantic import ValidationError

from app.core.config import FusionSettings, Settings
from app.domain.recommendation.entities import Timeframe
from app.domain.recommendation.errors import InvalidTimeframeError


class TestFusionSettings:
    """Tests for FUSION_* environment overrides."""

    def test_defaults_map_onto_engine_config(self):
        config = FusionSettings().to_engine_config()

        assert config.deadline_ms == 150
        assert config.kelly_fraction == 0.25
        assert config.min_risk_reward == 2.0
        assert config.risk_override_sources == frozenset({"risk_override"})
        assert config.ttl_for(Timeframe.H1) == 14_400
        assert config.timeframe_conviction_weights[Timeframe.W1] == 2.5

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FUSION_MIN_CONSENSUS", "0.7")
        monkeypatch.setenv("FUSION_DEADLINE_MS", "400")
        monkeypatch.setenv("FUSION_TIMEFRAME_TTL_SECONDS", '{"1h": 7200}')

        config = FusionSettings().to_engine_config()

        assert config.min_consensus == 0.7
        assert config.deadline_ms == 400
        assert config.ttl_for(Timeframe.H1) == 7_200
        # Unlisted timeframes fall back to their own length.
        assert config.ttl_for(Timeframe.D1) == Timeframe.D1.seconds

    def test_out_of_range_values_rejected(self, monkeypatch):
        monkeypatch.setenv("FUSION_KELLY_FRACTION", "0")

        with pytest.raises(ValidationError):
            FusionSettings()

    def test_unknown_timeframe_label_rejected(self):
        settings = FusionSettings(timeframe_ttl_seconds={"2h": 7200})

        with pytest.raises(InvalidTimeframeError):
            settings.to_engine_config()


class TestSettings:
    """Tests for service-level settings."""

    def test_storage_defaults_to_memory(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        settings = Settings()

        assert settings.database_url is None
        assert settings.outcome_monitor_enabled is True
        assert settings.rate_limit_heavy == "10/minute"
