"""
Dependency injection for the recommendation bounded context.

Provides FastAPI dependency functions that wire infrastructure
adapters into use cases via constructor injection.
These are the composition root for the recommendation context.

The engine, the feedback tracker and the stream manager hold state
shared by every request, so they are built once per process by
``get_container``.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy import create_engine

from app.application.recommendation.bulk_generate import BulkGenerateUseCase
from app.application.recommendation.generate_recommendation import (
    GenerateRecommendationUseCase,
)
from app.application.recommendation.get_ensemble_status import (
    GetEnsembleStatusUseCase,
    GetEnsembleWeightsUseCase,
)
from app.application.recommendation.get_latest_recommendation import (
    GetLatestRecommendationUseCase,
)
from app.application.recommendation.get_recommendation import GetRecommendationUseCase
from app.application.recommendation.record_outcome import RecordOutcomeUseCase
from app.application.recommendation.signal_collector import SignalCollector
from app.core.config import FusionSettings, Settings, fusion_settings, settings
from app.domain.recommendation.engine import RecommendationEngine
from app.domain.recommendation.entities import RiskContext
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker
from app.domain.recommendation.ports import RecommendationRepository
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
from app.infrastructure.recommendation.stream import RecommendationStreamManager

logger = logging.getLogger(__name__)


@dataclass
class RecommendationContainer:
    """Process-wide singletons of the recommendation context."""

    collaborators: MarketCollaborators
    collector: SignalCollector
    tracker: PerformanceFeedbackTracker
    repository: RecommendationRepository
    stream: RecommendationStreamManager
    generate: GenerateRecommendationUseCase
    bulk: BulkGenerateUseCase
    record_outcome: RecordOutcomeUseCase
    monitor: OutcomeMonitor


def _build_repository(app_settings: Settings) -> RecommendationRepository:
    """SQL audit store when DATABASE_URL is set, in-memory otherwise."""
    if not app_settings.database_url:
        return InMemoryRecommendationRepository()
    engine = create_engine(app_settings.database_url, pool_pre_ping=True)
    repository = SqlRecommendationRepository(engine)
    repository.ensure_tables()
    return repository


def build_container(
    app_settings: Settings,
    engine_settings: FusionSettings,
    collaborators: Optional[MarketCollaborators] = None,
    repository: Optional[RecommendationRepository] = None,
) -> RecommendationContainer:
    """Wire every adapter, service and use case of the context."""
    if collaborators is None:
        collaborators = MarketCollaborators.from_file(app_settings.market_fixtures_path)
    if repository is None:
        repository = _build_repository(app_settings)

    config = engine_settings.to_engine_config()
    sources = [
        TechnicalSource(collaborators.indicators),
        PatternSource(collaborators.patterns),
        SentimentSource(
            collaborators.sentiment,
            neutral_band=engine_settings.sentiment_neutral_band,
        ),
        MLModelSource(collaborators.predictions),
        VolumeSource(collaborators.volume),
        RiskOverrideSource(
            collaborators.market_data,
            spike_ratio=engine_settings.volatility_spike_ratio,
        ),
    ]
    collector = SignalCollector(sources)
    tracker = PerformanceFeedbackTracker(config, collector.source_ids)
    stream = RecommendationStreamManager(max_queue_size=engine_settings.stream_queue_size)

    generate = GenerateRecommendationUseCase(
        engine=RecommendationEngine(config),
        collector=collector,
        tracker=tracker,
        market_data=collaborators.market_data,
        portfolio_provider=collaborators.portfolios,
        repository=repository,
        default_risk_context=RiskContext(
            available_risk_budget_pct=app_settings.default_available_risk_budget_pct,
            max_position_pct=app_settings.default_max_position_pct,
        ),
        publisher=stream,
    )
    record_outcome = RecordOutcomeUseCase(tracker=tracker, repository=repository)
    monitor = OutcomeMonitor(
        tracker,
        collaborators.market_data,
        record_outcome,
        interval_seconds=engine_settings.outcome_poll_seconds,
    )

    logger.info(
        "Recommendation context wired: sources=%s repository=%s",
        ", ".join(collector.source_ids),
        type(repository).__name__,
    )
    return RecommendationContainer(
        collaborators=collaborators,
        collector=collector,
        tracker=tracker,
        repository=repository,
        stream=stream,
        generate=generate,
        bulk=BulkGenerateUseCase(generate, concurrency=engine_settings.bulk_concurrency),
        record_outcome=record_outcome,
        monitor=monitor,
    )


@lru_cache(maxsize=1)
def get_container() -> RecommendationContainer:
    """Build the process-wide container from application settings."""
    return build_container(settings, fusion_settings)


def get_generate_recommendation_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> GenerateRecommendationUseCase:
    return container.generate


def get_bulk_generate_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> BulkGenerateUseCase:
    return container.bulk


def get_record_outcome_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> RecordOutcomeUseCase:
    return container.record_outcome


def get_recommendation_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> GetRecommendationUseCase:
    """Build GetRecommendationUseCase over the shared audit store."""
    return GetRecommendationUseCase(repository=container.repository)


def get_latest_recommendation_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> GetLatestRecommendationUseCase:
    return GetLatestRecommendationUseCase(repository=container.repository)


def get_ensemble_weights_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> GetEnsembleWeightsUseCase:
    return GetEnsembleWeightsUseCase(tracker=container.tracker)


def get_ensemble_status_use_case(
    container: RecommendationContainer = Depends(get_container),
) -> GetEnsembleStatusUseCase:
    return GetEnsembleStatusUseCase(tracker=container.tracker, collector=container.collector)
