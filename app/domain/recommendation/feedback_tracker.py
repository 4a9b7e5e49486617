"""
Domain service: Performance feedback and adaptive source weights.

Tracks published recommendations through their outcome state machine

    PUBLISHED -> TARGET_HIT | STOP_HIT | EXPIRED

and, on each terminal transition, records one PerformanceSample per
contributing source, updates that source's accuracy EMA and publishes a
new WeightSnapshot whose weights are proportional to the EMAs.
Resolved recommendations leave the open set; only their final state is
remembered, in a bounded history.

Snapshots are immutable and swapped atomically: readers always see
either the old or the new snapshot, never a partial update, and an
evaluation keeps using the snapshot it read before fan-out.
"""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from uuid import UUID

import numpy as np

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import (
    Action,
    Direction,
    OutcomeEvent,
    OutcomeResult,
    OutcomeState,
    PerformanceSample,
    Recommendation,
    SourceId,
    SourceWeight,
    WeightSnapshot,
)
from app.domain.recommendation.errors import RecommendationNotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PerformanceFeedbackTracker:
    """Outcome state machine plus EMA-driven weight adaptation.

    Args:
        config: Engine configuration (EMA alpha, initial accuracy, bands).
        sources: Voting source ids to weight. Risk-override sources are
            excluded since they never vote.
        clock: Injectable UTC clock.
        terminal_history: How many resolved ids keep their final state
            before the oldest are forgotten.
    """

    def __init__(
        self,
        config: EngineConfig,
        sources: Iterable[SourceId],
        clock: Callable[[], datetime] = _utcnow,
        terminal_history: int = 10_000,
    ) -> None:
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._tracked: dict[UUID, Recommendation] = {}
        self._terminal: OrderedDict[UUID, OutcomeState] = OrderedDict()
        self._terminal_history = max(terminal_history, 1)

        voting = sorted({s for s in sources if not config.is_risk_override(s)})
        now = clock()
        self._snapshot = self._publish(
            version=1,
            previous={
                s: SourceWeight(
                    source=s,
                    weight=0.0,
                    accuracy_ema=config.initial_accuracy,
                    last_updated=now,
                )
                for s in voting
            },
            published_at=now,
        )

    @property
    def snapshot(self) -> WeightSnapshot:
        """Current weight snapshot (atomic read)."""
        return self._snapshot

    def track(self, recommendation: Recommendation) -> bool:
        """Start tracking a published recommendation.

        Only recommendations with an entry price and at least one
        contributing signal can be scored later. Ids that already
        resolved are not reopened.

        Returns:
            True if the recommendation is tracked or already resolved.
        """
        if recommendation.entry_price is None or not recommendation.contributing_signals:
            return False
        with self._lock:
            if recommendation.id not in self._terminal:
                self._tracked.setdefault(recommendation.id, recommendation)
        return True

    def mark_resolved(self, recommendation_id: UUID, state: OutcomeState) -> None:
        """Remember a recommendation resolved elsewhere (e.g. before a restart).

        No samples are produced and the weights are left untouched.
        """
        if not state.is_terminal:
            raise ValueError(f"{state.value} is not a terminal state")
        with self._lock:
            self._tracked.pop(recommendation_id, None)
            self._remember(recommendation_id, state)

    def state_of(self, recommendation_id: UUID) -> OutcomeState:
        """Return the outcome state of a tracked or recently resolved recommendation.

        Raises:
            RecommendationNotFoundError: If the id is not known.
        """
        with self._lock:
            if recommendation_id in self._tracked:
                return OutcomeState.PUBLISHED
            state = self._terminal.get(recommendation_id)
        if state is None:
            raise RecommendationNotFoundError(str(recommendation_id))
        return state

    def open_recommendations(self) -> list[Recommendation]:
        """Tracked recommendations still in PUBLISHED state."""
        with self._lock:
            return list(self._tracked.values())

    def record_outcome(self, recommendation_id: UUID, event: OutcomeEvent) -> OutcomeResult:
        """Feed a market observation for a tracked recommendation.

        Args:
            recommendation_id: Id of a tracked recommendation.
            event: Observed price and time, optionally forcing a state.

        Returns:
            OutcomeResult. ``samples`` is empty unless this event caused
            the terminal transition.

        Raises:
            RecommendationNotFoundError: If the id is not tracked.
        """
        with self._lock:
            resolved = self._terminal.get(recommendation_id)
            if resolved is not None:
                return OutcomeResult(
                    recommendation_id=recommendation_id,
                    state=resolved,
                    snapshot_version=self._snapshot.version,
                )

            rec = self._tracked.get(recommendation_id)
            if rec is None:
                raise RecommendationNotFoundError(str(recommendation_id))

            state = self._transition(rec, event)
            if not state.is_terminal:
                return OutcomeResult(
                    recommendation_id=recommendation_id,
                    state=state,
                    snapshot_version=self._snapshot.version,
                )

            del self._tracked[recommendation_id]
            self._remember(recommendation_id, state)
            samples = self._samples(rec, event, state)
            self._apply(samples, event.observed_at)
            version = self._snapshot.version

        logger.info(
            "Recommendation %s (%s) reached %s: %d samples, weights v%d",
            recommendation_id,
            rec.symbol,
            state.value,
            len(samples),
            version,
        )
        return OutcomeResult(
            recommendation_id=recommendation_id,
            state=state,
            samples=samples,
            snapshot_version=version,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(rec: Recommendation, event: OutcomeEvent) -> OutcomeState:
        if event.state is not None and event.state.is_terminal:
            return event.state

        price = event.price
        if rec.take_profit is not None and rec.stop_loss is not None:
            if rec.action is Action.BUY:
                if price >= rec.take_profit:
                    return OutcomeState.TARGET_HIT
                if price <= rec.stop_loss:
                    return OutcomeState.STOP_HIT
            elif rec.action is Action.SELL:
                if price <= rec.take_profit:
                    return OutcomeState.TARGET_HIT
                if price >= rec.stop_loss:
                    return OutcomeState.STOP_HIT

        if rec.is_expired(event.observed_at):
            return OutcomeState.EXPIRED
        return OutcomeState.PUBLISHED

    def _remember(self, recommendation_id: UUID, state: OutcomeState) -> None:
        """Record a final state, evicting the oldest past the limit. Caller holds the lock."""
        self._terminal[recommendation_id] = state
        self._terminal.move_to_end(recommendation_id)
        while len(self._terminal) > self._terminal_history:
            self._terminal.popitem(last=False)

    def _realized_direction(
        self, rec: Recommendation, state: OutcomeState, realized_return: float
    ) -> Direction:
        """Direction the market proved right.

        A hit target confirms the recommended direction and a hit stop
        refutes it, whatever the observed price. Expiries and
        non-directional actions are judged on the return band.
        """
        if rec.action in (Action.BUY, Action.SELL):
            called = Direction.BUY if rec.action is Action.BUY else Direction.SELL
            if state is OutcomeState.TARGET_HIT:
                return called
            if state is OutcomeState.STOP_HIT:
                return Direction.SELL if called is Direction.BUY else Direction.BUY

        band = self._config.hold_return_band
        if realized_return > band:
            return Direction.BUY
        if realized_return < -band:
            return Direction.SELL
        return Direction.HOLD

    def _samples(
        self, rec: Recommendation, event: OutcomeEvent, state: OutcomeState
    ) -> tuple[PerformanceSample, ...]:
        entry = rec.entry_price or 0.0
        realized_return = (event.price - entry) / entry if entry > 0 else 0.0
        realized = self._realized_direction(rec, state, realized_return)

        net: dict[SourceId, float] = {}
        for signal in rec.contributing_signals:
            net[signal.source] = net.get(signal.source, 0.0) + signal.signed_strength

        return tuple(
            PerformanceSample(
                recommendation_id=rec.id,
                source=source,
                realized_direction_correct=Direction.from_sign(net[source]) is realized,
                realized_return=realized_return,
                observed_at=event.observed_at,
                outcome_state=state,
            )
            for source in sorted(net)
        )

    def _apply(self, samples: Iterable[PerformanceSample], observed_at: datetime) -> None:
        """Update EMAs and swap in a new snapshot. Caller holds the lock."""
        alpha = self._config.ema_alpha
        current = {w.source: w for w in self._snapshot.weights}
        updated = dict(current)
        for sample in samples:
            previous = current.get(sample.source)
            if previous is None:
                continue
            outcome = 1.0 if sample.realized_direction_correct else 0.0
            updated[sample.source] = SourceWeight(
                source=sample.source,
                weight=previous.weight,
                accuracy_ema=alpha * outcome + (1.0 - alpha) * previous.accuracy_ema,
                last_updated=observed_at,
                samples=previous.samples + 1,
            )
        self._snapshot = self._publish(
            version=self._snapshot.version + 1,
            previous=updated,
            published_at=self._clock(),
        )

    @staticmethod
    def _publish(
        version: int,
        previous: dict[SourceId, SourceWeight],
        published_at: datetime,
    ) -> WeightSnapshot:
        """Normalize weights proportional to accuracy EMA (equal if all zero)."""
        sources = sorted(previous)
        if not sources:
            return WeightSnapshot(version=version, weights=(), published_at=published_at)

        emas = np.array([previous[s].accuracy_ema for s in sources], dtype=float)
        emas = np.clip(emas, 0.0, None)
        total = emas.sum()
        weights = emas / total if total > 0 else np.full(len(sources), 1.0 / len(sources))

        return WeightSnapshot(
            version=version,
            weights=tuple(
                SourceWeight(
                    source=s,
                    weight=float(w),
                    accuracy_ema=previous[s].accuracy_ema,
                    last_updated=previous[s].last_updated,
                    samples=previous[s].samples,
                )
                for s, w in zip(sources, weights)
            ),
            published_at=published_at,
        )
