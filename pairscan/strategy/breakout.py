"""Breakout v1 — placeholder plugin.

Publishes the breakout parameter schema so it can be configured and
listed, but never trades.
"""

from pairscan.strategy.base import ParamSpec
from pairscan.strategy.models import MarketContext, TradeIntent, no_trade


class BreakoutStrategy:
    ID = "breakout_v1"
    NAME = "Breakout v1"
    VERSION = "1.0.0"
    REQUIRED_TIMEFRAMES = ("H1", "M15")
    PARAMETERS = (
        ParamSpec("rangeWindowBars", "integer", "M15 bars used to compute breakout range", 32),
        ParamSpec("breakoutBufferPips", "number", "Pips beyond range boundary to confirm breakout", 1.5),
        ParamSpec("slBufferPips", "number", "SL buffer beyond opposite boundary", 2.0),
        ParamSpec("rrTarget", "number", "Target RR ratio", 1.6),
        ParamSpec("requireTrendAlignment", "boolean", "Require H1 trend alignment", True),
        ParamSpec("requireMomentumAlignment", "boolean", "Require M15 momentum alignment", True),
        ParamSpec("minRangePips", "number", "Minimum range size in pips", 8.0),
        ParamSpec("maxRangePips", "number", "Maximum range size in pips", 60.0),
    )

    def evaluate(self, context: MarketContext, params: dict) -> TradeIntent:
        return no_trade(
            "STRATEGY_NOT_IMPLEMENTED",
            f"Breakout strategy is not implemented yet; no trade for {context.pair}.",
            ("BREAKOUT", "NOT_IMPLEMENTED"),
        )
