"""
CLI entry point for the signal-fusion service.

Usage:
    # Serve the API
    python -m app.cli serve --port 8000

    # Evaluate symbols against a market fixture file
    python -m app.cli evaluate --fixtures market.json --symbols AAPL MSFT --timeframes 1h 1d
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

from app.core.config import fusion_settings, settings
from app.shared.logging import configure_logging

logger = logging.getLogger(__name__)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the FastAPI application under uvicorn."""
    import uvicorn

    logger.info("Starting %s at http://%s:%d", settings.project_name, args.host, args.port)
    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=False)


def cmd_evaluate(args: argparse.Namespace) -> None:
    """Evaluate symbols once and print the recommendations as JSON."""
    from app.application.recommendation.dtos import BulkGenerateCommand
    from app.domain.recommendation.entities import RiskContext
    from app.infrastructure.recommendation.collaborators import MarketCollaborators
    from app.infrastructure.recommendation.recommendation_repository import (
        InMemoryRecommendationRepository,
    )
    from app.interfaces.recommendation.dependencies import build_container

    container = build_container(
        settings,
        fusion_settings,
        collaborators=MarketCollaborators.from_file(args.fixtures),
        repository=InMemoryRecommendationRepository(),
    )
    risk_context = None
    if args.risk_budget is not None:
        risk_context = RiskContext(
            available_risk_budget_pct=args.risk_budget,
            max_position_pct=args.max_position,
        )
    command = BulkGenerateCommand(
        symbols=tuple(args.symbols),
        timeframes=tuple(args.timeframes),
        portfolio_id=args.portfolio,
        deadline_ms=args.deadline_ms,
        risk_context=risk_context,
    )
    result = asyncio.run(container.bulk.execute(command))

    json.dump(asdict(result), sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    if result.errors:
        logger.warning("%d symbol(s) failed.", len(result.errors))
        sys.exit(1)


def main() -> None:
    parser = argparse.ArgumentParser(description="Signal fusion recommendation engine CLI")
    parser.add_argument("--log-level", default=settings.log_level)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    eval_parser = subparsers.add_parser("evaluate", help="Evaluate symbols once")
    eval_parser.add_argument("--fixtures", required=True, help="Market fixture JSON file")
    eval_parser.add_argument("--symbols", nargs="+", required=True)
    eval_parser.add_argument("--timeframes", nargs="+", default=["1h"])
    eval_parser.add_argument("--portfolio", default=None, help="Portfolio id in the fixture")
    eval_parser.add_argument("--deadline-ms", type=int, default=None)
    eval_parser.add_argument("--risk-budget", type=float, default=None)
    eval_parser.add_argument("--max-position", type=float, default=settings.default_max_position_pct)

    args = parser.parse_args()
    configure_logging(level=args.log_level, stream=sys.stderr)

    commands = {
        "serve": cmd_serve,
        "evaluate": cmd_evaluate,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
