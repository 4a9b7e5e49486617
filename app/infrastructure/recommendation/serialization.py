"""
JSON-compatible (de)serialization of recommendation entities.

Used by the SQL audit store and the realtime stream. Enum values and
ISO-8601 timestamps keep the payload readable in the database.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from app.domain.recommendation.entities import (
    Action,
    ConflictKind,
    ConflictRecord,
    ConflictResolution,
    Direction,
    Recommendation,
    RiskLevel,
    Signal,
    SourceKind,
    Timeframe,
)


def signal_to_dict(signal: Signal) -> dict[str, Any]:
    return {
        "source": signal.source,
        "kind": signal.kind.value,
        "symbol": signal.symbol,
        "timeframe": signal.timeframe.value,
        "direction": signal.direction.value,
        "strength": signal.strength,
        "confidence": signal.confidence,
        "computed_at": signal.computed_at.isoformat(),
        "explanation": signal.explanation,
    }


def signal_from_dict(data: dict[str, Any]) -> Signal:
    return Signal(
        source=data["source"],
        kind=SourceKind(data["kind"]),
        symbol=data["symbol"],
        timeframe=Timeframe(data["timeframe"]),
        direction=Direction(data["direction"]),
        strength=data["strength"],
        confidence=data["confidence"],
        computed_at=datetime.fromisoformat(data["computed_at"]),
        explanation=data.get("explanation", ""),
    )


def _optional_signal(data: Optional[dict[str, Any]]) -> Optional[Signal]:
    return signal_from_dict(data) if data else None


def conflict_to_dict(record: ConflictRecord) -> dict[str, Any]:
    return {
        "kind": record.kind.value,
        "resolution": record.resolution.value,
        "signal_a": signal_to_dict(record.signal_a) if record.signal_a else None,
        "signal_b": signal_to_dict(record.signal_b) if record.signal_b else None,
        "detail": record.detail,
    }


def conflict_from_dict(data: dict[str, Any]) -> ConflictRecord:
    return ConflictRecord(
        kind=ConflictKind(data["kind"]),
        resolution=ConflictResolution(data["resolution"]),
        signal_a=_optional_signal(data.get("signal_a")),
        signal_b=_optional_signal(data.get("signal_b")),
        detail=data.get("detail", ""),
    )


def recommendation_to_dict(rec: Recommendation) -> dict[str, Any]:
    """Serialize a recommendation with its full audit trail."""
    return {
        "id": str(rec.id),
        "symbol": rec.symbol,
        "timestamp": rec.timestamp.isoformat(),
        "action": rec.action.value,
        "confidence": rec.confidence,
        "entry_price": rec.entry_price,
        "stop_loss": rec.stop_loss,
        "take_profit": rec.take_profit,
        "position_size_pct": rec.position_size_pct,
        "risk_reward_ratio": rec.risk_reward_ratio,
        "reasoning": list(rec.reasoning),
        "contributing_signals": [signal_to_dict(s) for s in rec.contributing_signals],
        "expires_at": rec.expires_at.isoformat(),
        "timeframe": rec.timeframe.value,
        "magnitude": rec.magnitude,
        "risk_level": rec.risk_level.value,
        "conflicts": [conflict_to_dict(c) for c in rec.conflicts],
        "failed_sources": list(rec.failed_sources),
        "weight_snapshot_version": rec.weight_snapshot_version,
    }


def recommendation_from_dict(data: dict[str, Any]) -> Recommendation:
    return Recommendation(
        id=UUID(data["id"]),
        symbol=data["symbol"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        action=Action(data["action"]),
        confidence=data["confidence"],
        entry_price=data["entry_price"],
        stop_loss=data["stop_loss"],
        take_profit=data["take_profit"],
        position_size_pct=data["position_size_pct"],
        risk_reward_ratio=data["risk_reward_ratio"],
        reasoning=tuple(data["reasoning"]),
        contributing_signals=tuple(signal_from_dict(s) for s in data["contributing_signals"]),
        expires_at=datetime.fromisoformat(data["expires_at"]),
        timeframe=Timeframe(data["timeframe"]),
        magnitude=data.get("magnitude", 0.0),
        risk_level=RiskLevel(data.get("risk_level", RiskLevel.HIGH.value)),
        conflicts=tuple(conflict_from_dict(c) for c in data.get("conflicts", [])),
        failed_sources=tuple(data.get("failed_sources", [])),
        weight_snapshot_version=data.get("weight_snapshot_version", 0),
    )
