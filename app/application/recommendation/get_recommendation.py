"""
Use case: Retrieve one recommendation with its full audit trail.

Input: GetRecommendationQuery (recommendation_id)
Output: RecommendationResult
Side effects: None.
Failure cases: RecommendationNotFoundError.
"""

from app.application.recommendation.dtos import (
    GetRecommendationQuery,
    RecommendationResult,
    recommendation_result,
)
from app.domain.recommendation.errors import RecommendationNotFoundError
from app.domain.recommendation.ports import RecommendationRepository


class GetRecommendationUseCase:
    """Looks up a recommendation by id."""

    def __init__(self, repository: RecommendationRepository) -> None:
        self._repository = repository

    def execute(self, query: GetRecommendationQuery) -> RecommendationResult:
        recommendation = self._repository.get(query.recommendation_id)
        if recommendation is None:
            raise RecommendationNotFoundError(str(query.recommendation_id))
        return recommendation_result(recommendation)
