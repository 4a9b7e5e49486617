"""
Shared fixtures for the HTTP tests.

The app is wired against seeded in-memory collaborators; the
process-wide container is swapped out through FastAPI's dependency
overrides.
"""

import pytest
from fastapi.testclient import TestClient

from app.core.config import FusionSettings, Settings
from app.infrastructure.recommendation.recommendation_repository import (
    InMemoryRecommendationRepository,
)
from app.interfaces.recommendation.dependencies import (
    RecommendationContainer,
    build_container,
    get_container,
)
from app.main import app
from app.shared.security.rate_limiting import limiter

from helpers import bullish_market


@pytest.fixture
def container() -> RecommendationContainer:
    return build_container(
        Settings(database_url=None, market_fixtures_path=None, outcome_monitor_enabled=False),
        FusionSettings(deadline_ms=2_000),
        collaborators=bullish_market(),
        repository=InMemoryRecommendationRepository(),
    )


@pytest.fixture
def client(container):
    """TestClient without lifespan; enough for the request/response routes."""
    limiter.reset()
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def live_client(container, monkeypatch):
    """TestClient with lifespan, so the stream and the monitor are wired."""
    monkeypatch.setattr("app.main.settings.outcome_monitor_enabled", False)
    limiter.reset()
    app.dependency_overrides[get_container] = lambda: container
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
