"""
Adapters: Recommendation audit repository.

Implements the RecommendationRepository port twice:
- ``InMemoryRecommendationRepository``: default, process-local.
- ``SqlRecommendationRepository``: SQLAlchemy-backed, used when
  ``DATABASE_URL`` is configured. Recommendations are stored as JSON
  payloads next to the columns needed for lookups.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine

from app.domain.recommendation.entities import (
    OutcomeState,
    PerformanceSample,
    Recommendation,
)
from app.domain.recommendation.ports import RecommendationRepository
from app.infrastructure.recommendation.serialization import (
    recommendation_from_dict,
    recommendation_to_dict,
)

logger = logging.getLogger(__name__)


class InMemoryRecommendationRepository(RecommendationRepository):
    """Process-local audit store. Recommendations are never mutated."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[UUID, Recommendation] = {}
        self._latest: dict[str, Recommendation] = {}
        self._samples: dict[UUID, list[PerformanceSample]] = {}

    def save(self, recommendation: Recommendation) -> None:
        with self._lock:
            self._by_id[recommendation.id] = recommendation
            current = self._latest.get(recommendation.symbol)
            if current is None or recommendation.timestamp >= current.timestamp:
                self._latest[recommendation.symbol] = recommendation

    def get(self, recommendation_id: UUID) -> Optional[Recommendation]:
        with self._lock:
            return self._by_id.get(recommendation_id)

    def get_latest(self, symbol: str) -> Optional[Recommendation]:
        with self._lock:
            return self._latest.get(symbol)

    def save_samples(self, samples: list[PerformanceSample]) -> None:
        with self._lock:
            for sample in samples:
                self._samples.setdefault(sample.recommendation_id, []).append(sample)

    def list_samples(self, recommendation_id: UUID) -> list[PerformanceSample]:
        with self._lock:
            return list(self._samples.get(recommendation_id, []))


class SqlRecommendationRepository(RecommendationRepository):
    """SQLAlchemy adapter for the recommendations and performance_samples tables."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def ensure_tables(self) -> None:
        """Create the audit tables if they do not exist (idempotent)."""
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    CREATE TABLE IF NOT EXISTS recommendations (
                        id VARCHAR(36) PRIMARY KEY,
                        symbol VARCHAR(32) NOT NULL,
                        created_at VARCHAR(40) NOT NULL,
                        action VARCHAR(8) NOT NULL,
                        payload TEXT NOT NULL
                    )
                    """
                )
            )
            conn.execute(
                text(
                    """
                    CREATE INDEX IF NOT EXISTS ix_recommendations_symbol_created
                    ON recommendations (symbol, created_at)
                    """
                )
            )
            conn.execute(
                text(
                    """
                    CREATE TABLE IF NOT EXISTS performance_samples (
                        recommendation_id VARCHAR(36) NOT NULL,
                        source VARCHAR(64) NOT NULL,
                        realized_direction_correct BOOLEAN NOT NULL,
                        realized_return DOUBLE PRECISION NOT NULL,
                        observed_at VARCHAR(40) NOT NULL,
                        outcome_state VARCHAR(16)
                    )
                    """
                )
            )
        logger.info("Recommendation audit tables ready.")

    def save(self, recommendation: Recommendation) -> None:
        query = text(
            """
            INSERT INTO recommendations (id, symbol, created_at, action, payload)
            VALUES (:id, :symbol, :created_at, :action, :payload)
            """
        )
        with self._engine.begin() as conn:
            conn.execute(
                query,
                {
                    "id": str(recommendation.id),
                    "symbol": recommendation.symbol,
                    "created_at": _sortable(recommendation.timestamp),
                    "action": recommendation.action.value,
                    "payload": json.dumps(recommendation_to_dict(recommendation)),
                },
            )
        logger.debug(
            "Saved recommendation: id=%s symbol=%s action=%s",
            recommendation.id,
            recommendation.symbol,
            recommendation.action.value,
        )

    def get(self, recommendation_id: UUID) -> Optional[Recommendation]:
        query = text("SELECT payload FROM recommendations WHERE id = :id")
        with self._engine.connect() as conn:
            row = conn.execute(query, {"id": str(recommendation_id)}).fetchone()
        if not row:
            return None
        return recommendation_from_dict(json.loads(row[0]))

    def get_latest(self, symbol: str) -> Optional[Recommendation]:
        query = text(
            """
            SELECT payload FROM recommendations
            WHERE symbol = :symbol
            ORDER BY created_at DESC
            LIMIT 1
            """
        )
        with self._engine.connect() as conn:
            row = conn.execute(query, {"symbol": symbol}).fetchone()
        if not row:
            return None
        return recommendation_from_dict(json.loads(row[0]))

    def save_samples(self, samples: list[PerformanceSample]) -> None:
        if not samples:
            return
        query = text(
            """
            INSERT INTO performance_samples
                (recommendation_id, source, realized_direction_correct,
                 realized_return, observed_at, outcome_state)
            VALUES (:recommendation_id, :source, :correct, :realized_return,
                    :observed_at, :outcome_state)
            """
        )
        with self._engine.begin() as conn:
            conn.execute(
                query,
                [
                    {
                        "recommendation_id": str(s.recommendation_id),
                        "source": s.source,
                        "correct": s.realized_direction_correct,
                        "realized_return": s.realized_return,
                        "observed_at": s.observed_at.isoformat(),
                        "outcome_state": s.outcome_state.value if s.outcome_state else None,
                    }
                    for s in samples
                ],
            )

    def list_samples(self, recommendation_id: UUID) -> list[PerformanceSample]:
        query = text(
            """
            SELECT recommendation_id, source, realized_direction_correct,
                   realized_return, observed_at, outcome_state
            FROM performance_samples
            WHERE recommendation_id = :id
            ORDER BY source ASC
            """
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query, {"id": str(recommendation_id)}).fetchall()
        return [
            PerformanceSample(
                recommendation_id=UUID(r[0]),
                source=r[1],
                realized_direction_correct=bool(r[2]),
                realized_return=float(r[3]),
                observed_at=datetime.fromisoformat(r[4]),
                outcome_state=OutcomeState(r[5]) if r[5] else None,
            )
            for r in rows
        ]


def _sortable(timestamp: datetime) -> str:
    """Fixed-width UTC string that sorts chronologically."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f")
