"""Strategy protocol and parameter schema.

Defines the interface that all strategy plugins must implement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from pairscan.strategy.models import MarketContext, TradeIntent

logger = logging.getLogger("pairscan.strategy")

ParamType = Literal["number", "integer", "boolean", "string"]


@dataclass(frozen=True)
class ParamSpec:
    """Declarative description of one tunable strategy knob."""

    name: str
    type: ParamType
    description: str
    default: Any

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "default": self.default,
        }


@runtime_checkable
class StrategyPlugin(Protocol):
    """Interface that all strategy plugins must satisfy.

    ``evaluate`` must be pure: same context and params in, same intent out.
    """

    ID: str
    NAME: str
    VERSION: str
    REQUIRED_TIMEFRAMES: tuple[str, ...]
    PARAMETERS: tuple[ParamSpec, ...]

    def evaluate(self, context: MarketContext, params: dict) -> TradeIntent:
        """Evaluate one pair and return a trade intent."""
        ...


def describe_plugin(plugin: StrategyPlugin) -> dict:
    """Return a JSON-friendly description of a plugin and its schema."""
    return {
        "id": plugin.ID,
        "name": plugin.NAME,
        "version": plugin.VERSION,
        "required_timeframes": list(plugin.REQUIRED_TIMEFRAMES),
        "parameters": {
            "type": "object",
            "properties": {p.name: p.to_dict() for p in plugin.PARAMETERS},
        },
    }


def _coerce(value: Any, spec: ParamSpec) -> Any:
    if spec.type == "number":
        return float(value)
    if spec.type == "integer":
        return int(float(value))
    if spec.type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    return str(value)


def resolve_params(schema: tuple[ParamSpec, ...], params: dict | None) -> dict:
    """Merge caller *params* over the schema defaults, coercing declared types.

    Keys not in the schema pass through untouched.  A value that cannot be
    coerced falls back to the default.
    """
    supplied = dict(params or {})
    resolved: dict = dict(supplied)
    for spec in schema:
        if spec.name not in supplied or supplied[spec.name] is None:
            resolved[spec.name] = spec.default
            continue
        try:
            resolved[spec.name] = _coerce(supplied[spec.name], spec)
        except (TypeError, ValueError, OverflowError):
            logger.warning(
                "Invalid value %r for parameter '%s', using default %r",
                supplied[spec.name], spec.name, spec.default,
            )
            resolved[spec.name] = spec.default
    return resolved
