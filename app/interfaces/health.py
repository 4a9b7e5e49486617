"""
Health check router.

``/health`` is the liveness probe. ``/health/ready`` also reports the
wired signal sources and the published weight snapshot version, so a
readiness probe fails if the recommendation context cannot be built.
"""

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.interfaces.recommendation.dependencies import (
    RecommendationContainer,
    get_container,
)
from app.interfaces.recommendation.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns application health status and version.",
)
def health_check() -> HealthResponse:
    """Return current application health status."""
    return HealthResponse(status="ok", version=settings.version)


@router.get(
    "/health/ready",
    response_model=HealthResponse,
    summary="Readiness check",
    description="Returns status once every signal source and the tracker are wired.",
)
def readiness_check(
    container: RecommendationContainer = Depends(get_container),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=settings.version,
        sources=list(container.collector.source_ids),
        weight_snapshot_version=container.tracker.snapshot.version,
    )
