"""Tests for pairscan.strategy.registry."""

import pytest

from pairscan.strategy.base import ParamSpec
from pairscan.strategy.models import no_trade
from pairscan.strategy.registry import StrategyRegistry, build_default_registry, get_strategy_registry


class DailyOnly:
    ID = "daily_only"
    NAME = "Daily"
    VERSION = "0.1.0"
    REQUIRED_TIMEFRAMES = ("D", "H1")
    PARAMETERS = (ParamSpec("lookback", "integer", "Bars", 10),)

    def evaluate(self, context, params):
        return no_trade("NO_SETUP", "never")


class TestStrategyRegistry:
    def test_annotations_do_not_resolve_against_methods(self):
        # ``list`` is also a method name on the class.
        assert StrategyRegistry.ids.__annotations__["return"] == "list[str]"
        assert StrategyRegistry.list.__annotations__["return"] == "list[StrategyPlugin]"

    def test_default_registry_contents(self):
        registry = build_default_registry()
        assert registry.ids() == ["h1_trend_m15_pullback", "flat_range_v1", "breakout_v1"]
        assert [p.ID for p in registry.list()] == registry.ids()

    def test_get_unknown_returns_none(self):
        assert build_default_registry().get("nope") is None

    def test_get_known(self):
        plugin = build_default_registry().get("flat_range_v1")
        assert plugin is not None
        assert plugin.NAME == "Range Fade (Flat) v1"

    def test_duplicate_id_rejected(self):
        registry = StrategyRegistry()
        registry.register(DailyOnly())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(DailyOnly())

    def test_required_timeframes_union(self):
        assert build_default_registry().required_timeframes() == ("H1", "M15")

        registry = build_default_registry()
        registry.register(DailyOnly())
        assert registry.required_timeframes() == ("H1", "M15", "D")

    def test_empty_registry(self):
        registry = StrategyRegistry()
        assert registry.list() == []
        assert registry.required_timeframes() == ()

    def test_shared_registry_is_cached(self):
        assert get_strategy_registry() is get_strategy_registry()
