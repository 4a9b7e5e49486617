"""
Use case: Generate recommendations for several symbols.

Input: BulkGenerateCommand (symbols, timeframes, portfolio_id, deadline_ms)
Output: BulkGenerateResult
Side effects: Same as GenerateRecommendation, per symbol.
Failure cases: PortfolioNotFoundError fails the whole batch; every other
    domain error is reported per symbol in ``errors``.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Union

from app.application.recommendation.dtos import (
    BulkError,
    BulkGenerateCommand,
    BulkGenerateResult,
    GenerateRecommendationCommand,
    RecommendationResult,
    recommendation_result,
)
from app.application.recommendation.generate_recommendation import (
    GenerateRecommendationUseCase,
)
from app.domain.recommendation.errors import RecommendationDomainError

logger = logging.getLogger(__name__)


class BulkGenerateUseCase:
    """Evaluates a batch of symbols with bounded concurrency."""

    def __init__(
        self,
        generate: GenerateRecommendationUseCase,
        concurrency: int = 8,
    ) -> None:
        self._generate = generate
        self._concurrency = max(1, concurrency)

    async def execute(self, command: BulkGenerateCommand) -> BulkGenerateResult:
        """Run the bulk use case.

        Raises:
            PortfolioNotFoundError: If the portfolio id is unknown.
        """
        template = GenerateRecommendationCommand(
            symbol="",
            timeframes=command.timeframes,
            portfolio_id=command.portfolio_id,
            deadline_ms=command.deadline_ms,
            risk_context=command.risk_context,
        )
        # Resolved once so an unknown portfolio fails the batch, not each symbol.
        risk_context = await self._generate.resolve_risk_context(
            template, self._generate.deadline_for(template)
        )
        if risk_context is not None:
            template = replace(template, risk_context=risk_context)

        symbols = list(dict.fromkeys(s.strip().upper() for s in command.symbols if s.strip()))
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(symbol: str) -> Union[RecommendationResult, BulkError]:
            async with semaphore:
                try:
                    rec = await self._generate.evaluate(replace(template, symbol=symbol))
                except RecommendationDomainError as exc:
                    logger.warning("Bulk evaluation failed for %s: %s", symbol, exc.message)
                    return BulkError(symbol=symbol, error=type(exc).__name__, detail=exc.message)
                return recommendation_result(rec)

        outcomes = await asyncio.gather(*(run(s) for s in symbols))

        result = BulkGenerateResult()
        for outcome in outcomes:
            if isinstance(outcome, BulkError):
                result.errors.append(outcome)
            else:
                result.recommendations.append(outcome)

        logger.info(
            "Bulk evaluation: %d symbols, %d recommendations, %d errors",
            len(symbols),
            len(result.recommendations),
            len(result.errors),
        )
        return result
