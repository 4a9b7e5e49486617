"""
Use case: Retrieve the authoritative recommendation for a symbol.

Input: GetLatestRecommendationQuery (symbol)
Output: RecommendationResult
Side effects: None.
Failure cases: RecommendationNotFoundError (none, or latest has expired).
"""

from collections.abc import Callable
from datetime import datetime, timezone

from app.application.recommendation.dtos import (
    GetLatestRecommendationQuery,
    RecommendationResult,
    recommendation_result,
)
from app.domain.recommendation.errors import RecommendationNotFoundError
from app.domain.recommendation.ports import RecommendationRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GetLatestRecommendationUseCase:
    """The latest recommendation supersedes every older one for a symbol."""

    def __init__(
        self,
        repository: RecommendationRepository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def execute(self, query: GetLatestRecommendationQuery) -> RecommendationResult:
        symbol = query.symbol.strip().upper()
        recommendation = self._repository.get_latest(symbol)
        if recommendation is None or recommendation.is_expired(self._clock()):
            raise RecommendationNotFoundError(symbol)
        return recommendation_result(recommendation)
