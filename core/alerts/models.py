"""Alert model and its state machine.

    ARMED --(condition met)--> TRIGGERED --(reset)--> ARMED
    ARMED --(suppress)--> SUPPRESSED --(resume)--> ARMED

TRIGGERED never fires again on its own; only an explicit `reset` re-arms it.

A COMPOUND alert combines several rules, kept in `metadata` as
`{"mode": "AND" | "OR", "rules": [{"type", "condition", "value", "symbol"?}]}`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class AlertState(str, Enum):
    ARMED = "ARMED"
    TRIGGERED = "TRIGGERED"
    SUPPRESSED = "SUPPRESSED"


class AlertKind(str, Enum):
    PRICE_CROSS = "PRICE_CROSS"
    RSI_LEVEL = "RSI_LEVEL"
    EMA_CROSS = "EMA_CROSS"
    ATR_SPIKE = "ATR_SPIKE"
    VOLUME_SURGE = "VOLUME_SURGE"
    COMPOUND = "COMPOUND"


class AlertCondition(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    CROSS_ABOVE = "CROSS_ABOVE"
    CROSS_BELOW = "CROSS_BELOW"


class CompoundMode(str, Enum):
    AND = "AND"
    OR = "OR"


COMPOUND_RULE_TYPES = ("PRICE", "RSI", "EMA_CROSS", "ATR", "VOLUME", "FUNDING", "OI", "LONG_SHORT_RATIO")
_CROSS_CONDITIONS = (AlertCondition.CROSS_ABOVE, AlertCondition.CROSS_BELOW)


class InvalidTransition(ValueError):
    """Raised when an alert is moved to a state its current state cannot reach."""


@dataclass(frozen=True)
class CompoundRule:
    """One leg of a compound alert. `symbol` overrides the alert's own symbol."""

    type: str
    condition: AlertCondition
    value: float = 0.0
    symbol: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompoundRule":
        rule_type = str(data.get("type", "")).upper()
        if rule_type not in COMPOUND_RULE_TYPES:
            raise ValueError(f"Unknown rule type: {data.get('type')}. Supported: {', '.join(COMPOUND_RULE_TYPES)}")
        condition = AlertCondition(str(data.get("condition", "ABOVE")).upper())
        if (rule_type == "EMA_CROSS") != (condition in _CROSS_CONDITIONS):
            raise ValueError(f"{rule_type} rules cannot use {condition.value}")
        return cls(
            type=rule_type,
            condition=condition,
            value=float(data.get("value", 0.0)),
            symbol=data.get("symbol") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "condition": self.condition.value, "value": self.value, "symbol": self.symbol}


def parse_compound(metadata: Mapping[str, Any]) -> tuple[CompoundMode, list[CompoundRule]]:
    """Read the mode and rules of a COMPOUND alert.

    Raises:
        ValueError: On an unknown mode, rule type or condition, or an empty rule list
    """
    mode = CompoundMode(str(metadata.get("mode", "AND")).upper())
    raw_rules = metadata.get("rules")
    if not isinstance(raw_rules, (list, tuple)) or not raw_rules:
        raise ValueError("compound alerts need at least one rule")
    return mode, [CompoundRule.from_dict(rule) for rule in raw_rules]


@dataclass
class Alert:
    """A user alert. `target` is a price, an RSI level or a multiplier depending on `kind`."""

    id: str
    symbol: str
    kind: AlertKind = AlertKind.PRICE_CROSS
    condition: AlertCondition = AlertCondition.ABOVE
    target: float = 0.0
    owner: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    state: AlertState = AlertState.ARMED
    triggered_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def trigger(self, when: Optional[datetime] = None) -> None:
        if self.state is not AlertState.ARMED:
            raise InvalidTransition(f"alert {self.id} is {self.state.value}, only ARMED alerts trigger")
        self.state = AlertState.TRIGGERED
        self.triggered_at = when or datetime.now(timezone.utc)

    def reset(self) -> None:
        """Re-arm a triggered (or suppressed) alert."""
        self.state = AlertState.ARMED
        self.triggered_at = None

    def suppress(self) -> None:
        if self.state is not AlertState.ARMED:
            raise InvalidTransition(f"alert {self.id} is {self.state.value}, only ARMED alerts can be suppressed")
        self.state = AlertState.SUPPRESSED

    def resume(self) -> None:
        if self.state is not AlertState.SUPPRESSED:
            raise InvalidTransition(f"alert {self.id} is {self.state.value}, only SUPPRESSED alerts resume")
        self.state = AlertState.ARMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "kind": self.kind.value,
            "condition": self.condition.value,
            "target": self.target,
            "owner": self.owner,
            "metadata": dict(self.metadata),
            "state": self.state.value,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "created_at": self.created_at.isoformat(),
        }
