"""
Outcome monitor for published recommendations.

Uses APScheduler to poll quotes for every open recommendation on a
fixed interval and feed them through RecordOutcome, which drives the
PUBLISHED -> TARGET_HIT / STOP_HIT / EXPIRED state machine without an
external trigger.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.application.recommendation.dtos import RecordOutcomeCommand
from app.application.recommendation.record_outcome import RecordOutcomeUseCase
from app.domain.recommendation.errors import (
    MarketDataUnavailableError,
    RecommendationDomainError,
)
from app.domain.recommendation.feedback_tracker import PerformanceFeedbackTracker
from app.domain.recommendation.ports import MarketDataProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MonitorRunResult:
    """Result of one polling pass."""

    started_at: str
    checked: int = 0
    transitions: dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    duration_seconds: float = 0.0


class OutcomeMonitor:
    """Periodically resolves open recommendations against live quotes.

    Usage:
        monitor = OutcomeMonitor(tracker, market_data, record_outcome, 30)
        monitor.start()      # begin polling
        monitor.run_once()   # one pass, blocking
        monitor.stop()       # graceful shutdown
    """

    def __init__(
        self,
        tracker: PerformanceFeedbackTracker,
        market_data: MarketDataProvider,
        record_outcome: RecordOutcomeUseCase,
        interval_seconds: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tracker = tracker
        self._market_data = market_data
        self._record_outcome = record_outcome
        self._interval = interval_seconds
        self._clock = clock
        self._scheduler: Optional[Any] = None
        self._lock = threading.Lock()
        self._last_run: Optional[MonitorRunResult] = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start polling on the configured interval."""
        if self._scheduler is not None:
            logger.warning("Outcome monitor already running.")
            return
        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(seconds=self._interval),
            id="outcome_monitor",
            name="Recommendation outcome polling",
        )
        self._scheduler.start()
        logger.info("Outcome monitor started (every %.0fs).", self._interval)

    def stop(self) -> None:
        """Gracefully stop polling."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Outcome monitor stopped.")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def run_once(self) -> MonitorRunResult:
        """Check every open recommendation once (blocking)."""
        with self._lock:
            started = time.monotonic()
            now = self._clock()
            result = MonitorRunResult(started_at=now.isoformat())

            for rec in self._tracker.open_recommendations():
                result.checked += 1
                try:
                    quote = self._market_data.get_quote(rec.symbol)
                except MarketDataUnavailableError as exc:
                    logger.warning("No quote for open recommendation %s: %s", rec.id, exc.reason)
                    result.skipped += 1
                    continue

                try:
                    outcome = self._record_outcome.execute(
                        RecordOutcomeCommand(
                            recommendation_id=rec.id,
                            price=quote.price,
                            observed_at=now,
                        )
                    )
                except RecommendationDomainError as exc:
                    logger.warning("Outcome check failed for %s: %s", rec.id, exc.message)
                    result.skipped += 1
                    continue

                if outcome.state != "PUBLISHED":
                    result.transitions[outcome.state] = result.transitions.get(outcome.state, 0) + 1

            result.duration_seconds = round(time.monotonic() - started, 3)
            self._last_run = result
            self._runs += 1

        if result.transitions:
            logger.info(
                "Outcome monitor: %d open checked, transitions=%s",
                result.checked,
                result.transitions,
            )
        return result

    def get_status(self) -> dict:
        """Return monitor state and the last run summary."""
        last = self._last_run
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "runs": self._runs,
            "open_recommendations": len(self._tracker.open_recommendations()),
            "last_run": None if last is None else {
                "started_at": last.started_at,
                "checked": last.checked,
                "transitions": dict(last.transitions),
                "skipped": last.skipped,
                "duration_seconds": last.duration_seconds,
            },
        }
