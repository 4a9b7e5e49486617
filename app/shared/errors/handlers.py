"""
Centralized error handlers for FastAPI.

Maps domain-specific errors to HTTP responses.
No stack traces or internal details are exposed to clients.
All error responses use the ErrorResponse schema.

Source, sizing and sufficiency errors never reach this layer: the
engine turns them into WATCH recommendations.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.domain.recommendation.errors import (
    EvaluationCancelledError,
    InternalInvariantViolationError,
    InvalidTimeframeError,
    PortfolioNotFoundError,
    RecommendationDomainError,
    RecommendationNotFoundError,
)

logger = logging.getLogger(__name__)

HTTP_404 = 404
HTTP_422 = 422
HTTP_499 = 499  # client closed request
HTTP_500 = 500


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(RecommendationNotFoundError)
    async def handle_recommendation_not_found(
        _request: Request, exc: RecommendationNotFoundError
    ) -> JSONResponse:
        """Handle unknown recommendation ids and symbols."""
        logger.warning("Recommendation not found: %s", exc.key)
        return _error_response(HTTP_404, "Recommendation not found", exc.key)

    @app.exception_handler(PortfolioNotFoundError)
    async def handle_portfolio_not_found(
        _request: Request, exc: PortfolioNotFoundError
    ) -> JSONResponse:
        """Handle missing portfolio errors."""
        logger.warning("Portfolio not found: %s", exc.portfolio_id)
        return _error_response(HTTP_404, "Portfolio not found")

    @app.exception_handler(InvalidTimeframeError)
    async def handle_invalid_timeframe(
        _request: Request, exc: InvalidTimeframeError
    ) -> JSONResponse:
        """Handle unsupported timeframe labels."""
        logger.warning("Invalid timeframe: %s", exc.label)
        return _error_response(HTTP_422, "Invalid timeframe", exc.label)

    @app.exception_handler(EvaluationCancelledError)
    async def handle_evaluation_cancelled(
        _request: Request, exc: EvaluationCancelledError
    ) -> JSONResponse:
        """Handle evaluations cancelled before fan-in."""
        logger.info("Evaluation cancelled: %s", exc.symbol)
        return _error_response(HTTP_499, "Evaluation cancelled")

    @app.exception_handler(InternalInvariantViolationError)
    async def handle_invariant_violation(
        _request: Request, exc: InternalInvariantViolationError
    ) -> JSONResponse:
        """Never surface a recommendation that broke its own invariants."""
        logger.error("Invariant violation: %s", exc.detail)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(RecommendationDomainError)
    async def handle_recommendation_domain(
        _request: Request, exc: RecommendationDomainError
    ) -> JSONResponse:
        """Catch-all for unhandled recommendation domain errors."""
        logger.error("Unhandled recommendation domain error: %s", exc.message)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
