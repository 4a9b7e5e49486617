"""
Concurrent signal collection (fan-out / fan-in).

Every (source, timeframe) pair is fetched as its own asyncio task
against one shared absolute deadline. The collector waits until all
tasks finish, the deadline passes, or the caller cancels, whichever
comes first; it never waits past the deadline. Sources that did not
answer in time are recorded as timed out and excluded, never counted
as a negative vote.

Per-source health counters (calls, timeouts, errors, latency) are kept
for the ensemble status endpoint.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from app.domain.recommendation.entities import Signal, SourceFailure, Timeframe
from app.domain.recommendation.errors import (
    EvaluationCancelledError,
    SourceTimeoutError,
    SourceUnavailableError,
)
from app.domain.recommendation.ports import SignalSource

logger = logging.getLogger(__name__)

_TIMEFRAME_ORDER = {tf: i for i, tf in enumerate(Timeframe)}


class CancellationToken:
    """Caller-side cancellation handle for one evaluation.

    Setting the token before fan-in aborts the evaluation; in-flight
    source calls are cancelled on a best-effort basis.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class SourceHealthStats:
    """Mutable call counters for one source."""

    source: str
    kind: str
    calls: int = 0
    successes: int = 0
    timeouts: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0
    last_error: Optional[str] = None

    @property
    def mean_latency_ms(self) -> float:
        answered = self.successes + self.errors
        return self.total_latency_ms / answered if answered else 0.0


@dataclass(frozen=True)
class CollectionResult:
    """Signals and failures gathered for one evaluation."""

    signals: tuple[Signal, ...]
    failures: tuple[SourceFailure, ...] = field(default_factory=tuple)
    expected_sources: int = 0
    elapsed_ms: float = 0.0


_Outcome = Union[Signal, SourceFailure]


class SignalCollector:
    """Fans out to every signal source and fans in before the deadline."""

    def __init__(
        self,
        sources: Sequence[SignalSource],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources = tuple(sources)
        self._clock = clock
        self._lock = threading.Lock()
        self._stats = {
            s.source_id: SourceHealthStats(source=s.source_id, kind=s.kind.value)
            for s in self._sources
        }

    @property
    def sources(self) -> tuple[SignalSource, ...]:
        return self._sources

    @property
    def source_ids(self) -> tuple[str, ...]:
        return tuple(s.source_id for s in self._sources)

    def health(self) -> list[SourceHealthStats]:
        """Return a copy of the per-source counters, sorted by source."""
        with self._lock:
            return [replace(self._stats[k]) for k in sorted(self._stats)]

    async def collect(
        self,
        symbol: str,
        timeframes: Sequence[Timeframe],
        deadline: float,
        token: Optional[CancellationToken] = None,
    ) -> CollectionResult:
        """Fetch every source for every timeframe before ``deadline``.

        Args:
            symbol: Ticker symbol.
            timeframes: Timeframes to evaluate.
            deadline: Absolute ``time.monotonic()`` value.
            token: Optional cancellation token.

        Returns:
            CollectionResult with signals sorted by timeframe then source.

        Raises:
            EvaluationCancelledError: If the token is set before fan-in.
        """
        started = self._clock()
        if token is not None and token.cancelled:
            raise EvaluationCancelledError(symbol)

        tasks: dict[asyncio.Task, tuple[SignalSource, Timeframe]] = {}
        for source in self._sources:
            for timeframe in timeframes:
                task = asyncio.create_task(
                    self._call(source, symbol, timeframe, deadline),
                    name=f"signal:{source.source_id}:{symbol}:{timeframe.value}",
                )
                tasks[task] = (source, timeframe)

        cancel_waiter = (
            asyncio.create_task(token.wait()) if token is not None else None
        )
        pending: set[asyncio.Task] = set(tasks)
        try:
            while pending:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                waiting = set(pending)
                if cancel_waiter is not None:
                    waiting.add(cancel_waiter)
                done, _ = await asyncio.wait(
                    waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter is not None and cancel_waiter in done:
                    logger.info("Evaluation of %s cancelled by caller", symbol)
                    raise EvaluationCancelledError(symbol)
                pending -= done
        finally:
            for task in pending:
                task.cancel()
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            leftovers = list(pending) + ([cancel_waiter] if cancel_waiter else [])
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        deadline_ms = max(0.0, (deadline - started) * 1000.0)
        signals: list[Signal] = []
        failures: list[SourceFailure] = []
        for task, (source, timeframe) in tasks.items():
            if task in pending:
                self._record_timeout(source.source_id)
                logger.warning(
                    "Source %s timed out for %s %s after %.0fms",
                    source.source_id,
                    symbol,
                    timeframe.value,
                    deadline_ms,
                )
                failures.append(
                    SourceFailure(
                        source=source.source_id,
                        timeframe=timeframe,
                        reason=f"no response within {deadline_ms:.0f}ms",
                        timed_out=True,
                    )
                )
                continue
            outcome: _Outcome = task.result()
            if isinstance(outcome, Signal):
                signals.append(outcome)
            else:
                failures.append(outcome)

        signals.sort(key=lambda s: (_TIMEFRAME_ORDER[s.timeframe], s.source))
        failures.sort(key=lambda f: (_TIMEFRAME_ORDER[f.timeframe], f.source))
        return CollectionResult(
            signals=tuple(signals),
            failures=tuple(failures),
            expected_sources=len(self._sources),
            elapsed_ms=(self._clock() - started) * 1000.0,
        )

    async def _call(
        self,
        source: SignalSource,
        symbol: str,
        timeframe: Timeframe,
        deadline: float,
    ) -> _Outcome:
        """Run one source call and convert failures into SourceFailure."""
        source_id = source.source_id
        with self._lock:
            self._stats[source_id].calls += 1
        started = self._clock()
        try:
            signal = await source.fetch(symbol, timeframe, deadline)
            if signal.source != source_id or signal.timeframe is not timeframe:
                raise SourceUnavailableError(
                    source_id,
                    f"returned signal for {signal.source}/{signal.timeframe.value}",
                )
        except SourceTimeoutError as exc:
            self._record_timeout(source_id)
            logger.warning("Source %s timed out for %s: %s", source_id, symbol, exc.reason)
            return SourceFailure(source_id, timeframe, exc.reason, timed_out=True)
        except SourceUnavailableError as exc:
            self._record_error(source_id, started, exc.reason)
            logger.warning("Source %s unavailable for %s: %s", source_id, symbol, exc.reason)
            return SourceFailure(source_id, timeframe, exc.reason, timed_out=False)
        except Exception as exc:
            self._record_error(source_id, started, str(exc))
            logger.warning(
                "Source %s failed for %s: %s", source_id, symbol, exc, exc_info=True
            )
            return SourceFailure(source_id, timeframe, str(exc), timed_out=False)

        with self._lock:
            stats = self._stats[source_id]
            stats.successes += 1
            stats.total_latency_ms += (self._clock() - started) * 1000.0
        return signal

    def _record_timeout(self, source_id: str) -> None:
        with self._lock:
            self._stats[source_id].timeouts += 1

    def _record_error(self, source_id: str, started: float, reason: str) -> None:
        with self._lock:
            stats = self._stats[source_id]
            stats.errors += 1
            stats.total_latency_ms += (self._clock() - started) * 1000.0
            stats.last_error = reason
