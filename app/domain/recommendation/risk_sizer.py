"""
Domain service: Risk-adjusted position sizing.

Pure business logic. No framework imports. No IO. No side effects.

Turns a resolved direction, its magnitude and confidence, the current
volatility (ATR) and the portfolio risk context into a position size,
stop-loss, take-profit and risk/reward ratio. A recommendation never
carries an executable action with a risk/reward below the configured
minimum: such cases are downgraded to WATCH with zero size.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.domain.recommendation.engine_config import EngineConfig
from app.domain.recommendation.entities import Action, Direction, Quote, RiskContext
from app.domain.recommendation.errors import (
    InvalidRiskContextError,
    MarketDataUnavailableError,
)

logger = logging.getLogger(__name__)

_RR_TOLERANCE = 1e-9
_MAX_PCT = 100.0


def levels_ordered(
    direction: Direction, entry: float, stop_loss: float, take_profit: float
) -> bool:
    """Check stop < entry < target for BUY and target < entry < stop for SELL."""
    if direction is Direction.BUY:
        return stop_loss < entry < take_profit
    if direction is Direction.SELL:
        return take_profit < entry < stop_loss
    return True


@dataclass(frozen=True)
class SizingResult:
    """Executable levels and size for one recommendation."""

    action: Action
    position_size_pct: float
    entry_price: Optional[float]
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    notes: tuple[str, ...] = ()


class RiskAdjustedSizer:
    """Fractional-Kelly sizing with ATR-based stop and target placement."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    @staticmethod
    def validate(risk_context: Optional[RiskContext]) -> RiskContext:
        """Validate a portfolio risk context.

        Raises:
            InvalidRiskContextError: If the context is missing, any value is
                negative or above 100%, or the available budget is zero.
        """
        if risk_context is None:
            raise InvalidRiskContextError("risk context unavailable")
        values = {
            "available_risk_budget_pct": risk_context.available_risk_budget_pct,
            "max_position_pct": risk_context.max_position_pct,
            "open_correlated_exposure_pct": risk_context.open_correlated_exposure_pct,
        }
        for name, value in values.items():
            if value < 0:
                raise InvalidRiskContextError(f"{name} is negative ({value})")
            if value > _MAX_PCT:
                raise InvalidRiskContextError(f"{name} exceeds 100% ({value})")
        if risk_context.available_risk_budget_pct == 0:
            raise InvalidRiskContextError("available_risk_budget_pct is zero")
        return risk_context

    def size(
        self,
        direction: Direction,
        magnitude: float,
        confidence: float,
        quote: Optional[Quote],
        risk_context: Optional[RiskContext],
        aggressive: bool = True,
    ) -> SizingResult:
        """Size a position for a resolved direction.

        Args:
            direction: Final direction after conflict resolution.
            magnitude: Fused magnitude in [-1, 1].
            confidence: Overall confidence in [0, 1].
            quote: Current price and ATR.
            risk_context: Portfolio risk budget.
            aggressive: False caps the size (moderate consensus).

        Returns:
            SizingResult; HOLD for a HOLD direction, WATCH when the
            risk/reward floor or the risk budget rules out a trade.

        Raises:
            InvalidRiskContextError: If the risk context is malformed.
            MarketDataUnavailableError: If price or ATR are unusable.
        """
        context = self.validate(risk_context)

        if direction is Direction.HOLD:
            entry = quote.price if quote is not None and quote.price > 0 else None
            return SizingResult(action=Action.HOLD, position_size_pct=0.0, entry_price=entry)

        if quote is None:
            raise MarketDataUnavailableError("<unknown>", "no quote")
        if quote.price <= 0:
            raise MarketDataUnavailableError(quote.symbol, f"non-positive price {quote.price}")
        if quote.atr <= 0:
            raise MarketDataUnavailableError(quote.symbol, "ATR missing or non-positive")
        entry = quote.price

        sign = direction.sign
        stop_distance = self._config.stop_atr_multiple * quote.atr
        stop_loss = entry - sign * stop_distance
        take_profit = entry + sign * self._config.target_risk_reward * stop_distance

        if stop_loss <= 0 or take_profit <= 0 or not levels_ordered(
            direction, entry, stop_loss, take_profit
        ):
            return SizingResult(
                action=Action.WATCH,
                position_size_pct=0.0,
                entry_price=entry,
                notes=(
                    f"{direction.value} levels not representable: stop distance "
                    f"{stop_distance:.6g} for price {entry:.4f}",
                ),
            )

        risk_reward = abs(take_profit - entry) / abs(entry - stop_loss)
        if risk_reward + _RR_TOLERANCE < self._config.min_risk_reward:
            return SizingResult(
                action=Action.WATCH,
                position_size_pct=0.0,
                entry_price=entry,
                stop_loss=stop_loss,
                take_profit=take_profit,
                risk_reward_ratio=risk_reward,
                notes=(
                    f"risk/reward {risk_reward:.2f} below minimum "
                    f"{self._config.min_risk_reward:.2f}; downgraded to WATCH",
                ),
            )

        notes: list[str] = []
        raw_pct = confidence * abs(magnitude) * self._config.kelly_fraction * _MAX_PCT
        if not aggressive:
            raw_pct *= self._config.moderate_consensus_size_multiplier
        headroom = context.available_risk_budget_pct - context.open_correlated_exposure_pct
        size_pct = max(0.0, min(raw_pct, context.max_position_pct, headroom))

        if size_pct < raw_pct:
            notes.append(
                f"size clamped from {raw_pct:.2f}% to {size_pct:.2f}% "
                f"(max position {context.max_position_pct:.2f}%, "
                f"budget headroom {headroom:.2f}%)"
            )

        if size_pct <= 0.0:
            return SizingResult(
                action=Action.WATCH,
                position_size_pct=0.0,
                entry_price=entry,
                stop_loss=stop_loss,
                take_profit=take_profit,
                risk_reward_ratio=risk_reward,
                notes=(
                    f"no risk budget headroom ({headroom:.2f}%) for correlated "
                    "exposure; downgraded to WATCH",
                ),
            )

        notes.append(
            f"size {size_pct:.2f}% of equity, stop {stop_loss:.4f} "
            f"({self._config.stop_atr_multiple:g}×ATR), target {take_profit:.4f}, "
            f"risk/reward {risk_reward:.2f}"
        )
        return SizingResult(
            action=Action.BUY if direction is Direction.BUY else Action.SELL,
            position_size_pct=size_pct,
            entry_price=entry,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward_ratio=risk_reward,
            notes=tuple(notes),
        )
