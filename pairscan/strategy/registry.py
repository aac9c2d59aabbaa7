"""Strategy registry — maps strategy ids to plugin instances.

Populated once at startup; the engine looks plugins up by id each cycle.
"""

from __future__ import annotations

from typing import Optional

from pairscan.strategy.base import StrategyPlugin
from pairscan.strategy.breakout import BreakoutStrategy
from pairscan.strategy.range_fade import RangeFadeStrategy
from pairscan.strategy.trend_pullback import TrendPullbackStrategy


class StrategyRegistry:
    """Id-keyed lookup of strategy plugins, read-only once populated."""

    def __init__(self) -> None:
        self._strategies: dict[str, StrategyPlugin] = {}

    def register(self, plugin: StrategyPlugin) -> None:
        """Add *plugin*.  Raises ``ValueError`` if its id is already taken."""
        if plugin.ID in self._strategies:
            raise ValueError(f"Strategy '{plugin.ID}' is already registered")
        self._strategies[plugin.ID] = plugin

    def get(self, strategy_id: str) -> Optional[StrategyPlugin]:
        return self._strategies.get(strategy_id)

    def list(self) -> list[StrategyPlugin]:
        return list(self._strategies.values())

    def ids(self) -> list[str]:
        return list(self._strategies.keys())

    def required_timeframes(self) -> tuple[str, ...]:
        """Union of every plugin's timeframes, in first-seen order."""
        seen: list[str] = []
        for plugin in self._strategies.values():
            for tf in plugin.REQUIRED_TIMEFRAMES:
                if tf not in seen:
                    seen.append(tf)
        return tuple(seen)


def build_default_registry() -> StrategyRegistry:
    """Create a registry holding the built-in strategies."""
    registry = StrategyRegistry()
    registry.register(TrendPullbackStrategy())
    registry.register(RangeFadeStrategy())
    registry.register(BreakoutStrategy())
    return registry


_default_registry: Optional[StrategyRegistry] = None


def get_strategy_registry() -> StrategyRegistry:
    """Return the shared default registry, building it on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
