"""
Domain-specific errors for the recommendation bounded context.

All errors raised from the domain layer must be defined here.
Source-, conflict- and risk-level errors are absorbed by the engine and
turned into degraded recommendations; the rest are mapped to HTTP
responses at the interface layer.
No framework imports allowed.
"""


class RecommendationDomainError(Exception):
    """Base error for all recommendation domain errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class SourceUnavailableError(RecommendationDomainError):
    """Raised when a signal source fails to produce a signal."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Source unavailable: {source} ({reason})")
        self.source = source
        self.reason = reason


class SourceTimeoutError(SourceUnavailableError):
    """Raised when a signal source does not respond before the deadline."""

    def __init__(self, source: str, deadline_ms: float) -> None:
        super().__init__(source, f"no response within {deadline_ms:.0f}ms")
        self.deadline_ms = deadline_ms


class InsufficientSignalsError(RecommendationDomainError):
    """Raised when fewer than the configured minimum of sources responded."""

    def __init__(self, responded: int, expected: int, required: int) -> None:
        super().__init__(
            f"Insufficient signals: {responded} of {expected} sources responded, "
            f"{required} required"
        )
        self.responded = responded
        self.expected = expected
        self.required = required


class InvalidRiskContextError(RecommendationDomainError):
    """Raised when caller-supplied risk parameters are malformed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid risk context: {reason}")
        self.reason = reason


class MarketDataUnavailableError(RecommendationDomainError):
    """Raised when price or volatility needed for sizing is missing."""

    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"Market data unavailable for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class InternalInvariantViolationError(RecommendationDomainError):
    """Raised when an assembled recommendation breaks an ordering invariant.

    Indicates a logic defect. Never converted into a tradable result.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(f"Internal invariant violation: {detail}")
        self.detail = detail


class RecommendationNotFoundError(RecommendationDomainError):
    """Raised when a recommendation id or symbol has no recommendation."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Recommendation not found: {key}")
        self.key = key


class PortfolioNotFoundError(RecommendationDomainError):
    """Raised when a portfolio's risk context cannot be found."""

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio not found: {portfolio_id}")
        self.portfolio_id = portfolio_id


class InvalidTimeframeError(RecommendationDomainError):
    """Raised when a timeframe label is not supported."""

    def __init__(self, label: str) -> None:
        super().__init__(f"Invalid timeframe: {label}")
        self.label = label


class EvaluationCancelledError(RecommendationDomainError):
    """Raised when the caller cancels an evaluation before fan-in."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Evaluation cancelled for {symbol}")
        self.symbol = symbol
