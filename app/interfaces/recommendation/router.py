"""
FastAPI router for the recommendation bounded context.

Thin HTTP layer: validate input, call a use case, map the result onto
a response schema. Domain errors propagate to the centralized error
handlers.
"""

import asyncio
import logging
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from app.application.recommendation.bulk_generate import BulkGenerateUseCase
from app.application.recommendation.dtos import (
    BulkGenerateCommand,
    GenerateRecommendationCommand,
    GetLatestRecommendationQuery,
    GetRecommendationQuery,
    RecommendationResult,
    RecordOutcomeCommand,
)
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
from app.application.recommendation.signal_collector import CancellationToken
from app.domain.recommendation.entities import RiskContext
from app.interfaces.recommendation.dependencies import (
    get_bulk_generate_use_case,
    get_ensemble_status_use_case,
    get_ensemble_weights_use_case,
    get_generate_recommendation_use_case,
    get_latest_recommendation_use_case,
    get_record_outcome_use_case,
    get_recommendation_use_case,
)
from app.interfaces.recommendation.schemas import (
    BulkGenerateRequest,
    BulkGenerateResponse,
    EnsembleStatusResponse,
    ErrorResponse,
    GenerateRecommendationRequest,
    RecommendationResponse,
    RecordOutcomeRequest,
    RecordOutcomeResponse,
    RiskContextSchema,
    WeightSnapshotResponse,
)
from app.shared.security.rate_limiting import DEFAULT_RATE_LIMIT, HEAVY_RATE_LIMIT, limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])

DISCONNECT_POLL_SECONDS = 0.02


def _risk_context(schema: RiskContextSchema | None) -> RiskContext | None:
    if schema is None:
        return None
    return RiskContext(
        available_risk_budget_pct=schema.available_risk_budget_pct,
        max_position_pct=schema.max_position_pct,
        open_correlated_exposure_pct=schema.open_correlated_exposure_pct,
    )


def _to_response(result: RecommendationResult) -> RecommendationResponse:
    return RecommendationResponse.model_validate(asdict(result))


async def watch_disconnect(
    request: Request,
    token: CancellationToken,
    interval: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Cancel ``token`` once the client goes away. Runs until cancelled."""
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected from %s; cancelling evaluation", request.url.path)
            token.cancel()
            return
        await asyncio.sleep(interval)


# ------------------------------------------------------------------
# Evaluation
# ------------------------------------------------------------------


@router.post(
    "/recommendations",
    response_model=RecommendationResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Generate a recommendation",
    description=(
        "Collect signals for a symbol from every analysis source within the "
        "deadline, fuse them and return a sized, explained recommendation."
    ),
)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def generate_recommendation(
    body: GenerateRecommendationRequest,
    request: Request,
    use_case: GenerateRecommendationUseCase = Depends(get_generate_recommendation_use_case),
) -> RecommendationResponse:
    """Evaluate one symbol; a client disconnect cancels the evaluation."""
    command = GenerateRecommendationCommand(
        symbol=body.symbol,
        timeframes=tuple(body.timeframes),
        portfolio_id=body.portfolio_id,
        deadline_ms=body.deadline_ms,
        risk_context=_risk_context(body.risk_context),
    )
    token = CancellationToken()
    watcher = asyncio.create_task(watch_disconnect(request, token))
    try:
        result = await use_case.execute(command, token)
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
    return _to_response(result)


@router.post(
    "/recommendations/bulk",
    response_model=BulkGenerateResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Generate recommendations for several symbols",
    description=(
        "Evaluate each symbol independently. A failing symbol is reported in "
        "``errors`` and never fails the whole batch."
    ),
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def bulk_generate(
    body: BulkGenerateRequest,
    request: Request,
    use_case: BulkGenerateUseCase = Depends(get_bulk_generate_use_case),
) -> BulkGenerateResponse:
    """Evaluate a batch of symbols."""
    result = await use_case.execute(
        BulkGenerateCommand(
            symbols=tuple(body.symbols),
            timeframes=tuple(body.timeframes),
            portfolio_id=body.portfolio_id,
            deadline_ms=body.deadline_ms,
            risk_context=_risk_context(body.risk_context),
        )
    )
    return BulkGenerateResponse.model_validate(asdict(result))


# ------------------------------------------------------------------
# Audit trail
# ------------------------------------------------------------------


@router.get(
    "/recommendations/latest/{symbol}",
    response_model=RecommendationResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get the latest recommendation for a symbol",
    description="Return the most recent unexpired recommendation for a symbol.",
)
def get_latest_recommendation(
    symbol: str,
    use_case: GetLatestRecommendationUseCase = Depends(get_latest_recommendation_use_case),
) -> RecommendationResponse:
    return _to_response(use_case.execute(GetLatestRecommendationQuery(symbol=symbol)))


@router.get(
    "/recommendations/{recommendation_id}",
    response_model=RecommendationResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a recommendation by id",
    description="Return a stored recommendation with its signals and conflicts.",
)
def get_recommendation(
    recommendation_id: UUID,
    use_case: GetRecommendationUseCase = Depends(get_recommendation_use_case),
) -> RecommendationResponse:
    return _to_response(
        use_case.execute(GetRecommendationQuery(recommendation_id=recommendation_id))
    )


# ------------------------------------------------------------------
# Feedback
# ------------------------------------------------------------------


@router.post(
    "/recommendations/{recommendation_id}/outcome",
    response_model=RecordOutcomeResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Report a market observation",
    description=(
        "Advance the recommendation's outcome state. A terminal outcome "
        "produces one performance sample per contributing source and "
        "publishes a new weight snapshot."
    ),
)
def record_outcome(
    recommendation_id: UUID,
    body: RecordOutcomeRequest,
    use_case: RecordOutcomeUseCase = Depends(get_record_outcome_use_case),
) -> RecordOutcomeResponse:
    result = use_case.execute(
        RecordOutcomeCommand(
            recommendation_id=recommendation_id,
            price=body.price,
            observed_at=body.observed_at,
            state=body.state,
        )
    )
    return RecordOutcomeResponse.model_validate(asdict(result))


@router.get(
    "/ensemble/weights",
    response_model=WeightSnapshotResponse,
    summary="Get current source weights",
    description="Return the latest published weight snapshot.",
)
def get_ensemble_weights(
    use_case: GetEnsembleWeightsUseCase = Depends(get_ensemble_weights_use_case),
) -> WeightSnapshotResponse:
    return WeightSnapshotResponse.model_validate(asdict(use_case.execute()))


@router.get(
    "/ensemble/status",
    response_model=EnsembleStatusResponse,
    summary="Get ensemble health",
    description=(
        "Per-source call statistics plus the entropy of the weight "
        "distribution; low entropy means one source dominates."
    ),
)
def get_ensemble_status(
    use_case: GetEnsembleStatusUseCase = Depends(get_ensemble_status_use_case),
) -> EnsembleStatusResponse:
    return EnsembleStatusResponse.model_validate(asdict(use_case.execute()))
