"""H1 Trend + M15 Pullback strategy.

Implements ``StrategyPlugin``.  Trades only in the direction of the H1
trend, entering on an M15 pullback into a swing support (BUY) or swing
resistance (SELL) level.
"""

from typing import Optional

from pairscan.broker.models import Candle
from pairscan.strategy.base import ParamSpec, resolve_params
from pairscan.strategy.models import MarketContext, TradeIntent, no_trade, pip_size, round_price

MIN_SL_PIPS = 6.0
TP_CLEARANCE_ATR = 0.12
TP_CLEARANCE_MIN_PIPS = 4.0


def _count_direction(candles: list[Candle], direction: str, amount: int) -> int:
    recent = candles[-amount:]
    if direction == "bearish":
        return sum(1 for c in recent if c.close < c.open)
    return sum(1 for c in recent if c.close > c.open)


def _last_direction(candles: list[Candle]) -> str:
    if not candles:
        return "flat"
    last = candles[-1]
    if last.close > last.open:
        return "bullish"
    if last.close < last.open:
        return "bearish"
    return "flat"


def _nearest_below(levels: tuple[float, ...], price: float) -> Optional[float]:
    below = [lvl for lvl in levels if lvl < price]
    return max(below) if below else None


def _nearest_above(levels: tuple[float, ...], price: float) -> Optional[float]:
    above = [lvl for lvl in levels if lvl > price]
    return min(above) if above else None


def _min_stop_distance(pair: str, atr_m15: float, min_sl_atr: float) -> float:
    # ATR alone is too tight in quiet sessions; 6 pips is the floor.
    return max(atr_m15 * min_sl_atr, pip_size(pair) * MIN_SL_PIPS)


class TrendPullbackStrategy:
    """With-trend pullback entries on M15, filtered by the H1 trend.

    Flow (BUY side; SELL is mirrored):
        1. Reject when data is missing or the H1 trend is RANGE.
        2. Reject while M15 momentum is STRONG_DOWN and the last candle is
           still bearish (pullback not yet stabilising).
        3. Require a pullback: ≥2 of the last 3 candles bearish, or a
           retrace from the nearest swing high ≥ ``pullbackAtrRatio`` × ATR.
        4. Require price within ``zoneAtrTolerance`` × ATR of a swing support.
        5. Entry at ask, SL below support minus ``slAtrBuffer`` × ATR and
           at least the minimum stop distance away, TP at ``rrTarget`` × risk.
        6. Reject if TP lands inside the clearance band below the nearest
           resistance.
    """

    ID = "h1_trend_m15_pullback"
    NAME = "H1 Trend + M15 Pullback"
    VERSION = "1.0.0"
    REQUIRED_TIMEFRAMES = ("H1", "M15")
    PARAMETERS = (
        ParamSpec("rrTarget", "number", "Target RR ratio", 1.6),
        ParamSpec("pullbackAtrRatio", "number", "Minimum pullback depth in ATR", 0.3),
        ParamSpec("zoneAtrTolerance", "number", "Distance to support/resistance in ATR", 0.35),
        ParamSpec("slAtrBuffer", "number", "SL buffer beyond zone in ATR", 0.1),
        ParamSpec("minSlAtr", "number", "Minimum SL distance in ATR", 0.2),
    )

    def evaluate(self, context: MarketContext, params: dict) -> TradeIntent:
        """Run the trend-pullback evaluation for one pair."""
        p = resolve_params(self.PARAMETERS, params)
        ind = context.indicators
        m15 = context.candles_for("M15")

        if not m15 or ind.atr_m15 <= 0:
            return no_trade(
                "DATA_MISSING",
                "Not enough M15/ATR data for the trend-pullback strategy.",
                ("DATA_MISSING",),
            )

        if ind.trend_h1 == "RANGE":
            return no_trade(
                "TREND_RANGE",
                "H1 trend is RANGE; this strategy does not trade flat markets.",
                ("TREND_RANGE",),
            )

        if ind.trend_h1 == "BULL":
            return self._evaluate_buy(context, m15, p)
        return self._evaluate_sell(context, m15, p)

    # ── BUY ──────────────────────────────────────────────────────────────

    def _evaluate_buy(self, context: MarketContext, m15: list[Candle], p: dict) -> TradeIntent:
        pair = context.pair
        pip = pip_size(pair)
        atr = context.indicators.atr_m15
        swings = context.indicators.swings_m15
        mid = context.price.mid

        recent_high = _nearest_above(swings.highs, mid)
        if recent_high is None:
            recent_high = max(list(swings.highs) + [c.high for c in m15[-8:]])
        recent_low = _nearest_below(swings.lows, mid)
        if recent_low is None:
            recent_low = min(list(swings.lows) + [c.low for c in m15[-8:]])

        bearish_count = _count_direction(m15, "bearish", 3)
        retrace = max(0.0, recent_high - mid)
        has_pullback = bearish_count >= 2 or retrace >= atr * p["pullbackAtrRatio"]
        support = _nearest_below(swings.lows, mid)
        near_support = support is not None and (mid - support) <= atr * p["zoneAtrTolerance"]

        if context.indicators.momentum_m15 == "STRONG_DOWN" and _last_direction(m15) == "bearish":
            return no_trade(
                "MOMENTUM_CONFLICT",
                "M15 momentum STRONG_DOWN: waiting for the pullback to stabilise before BUY.",
                ("MOMENTUM_CONFLICT",),
            )
        if not has_pullback:
            return no_trade("PULLBACK_MISSING", "No confirmed pullback for BUY.", ("PULLBACK_MISSING",))
        if not near_support:
            return no_trade(
                "NOT_NEAR_SUPPORT",
                "Price is not in a support zone for a BUY pullback.",
                ("NOT_NEAR_SUPPORT",),
            )

        entry = context.price.ask
        anchor = support if support is not None else recent_low
        sl_raw = anchor - atr * p["slAtrBuffer"]
        stop_loss = min(sl_raw, entry - _min_stop_distance(pair, atr, p["minSlAtr"]))
        risk = entry - stop_loss
        take_profit = entry + risk * p["rrTarget"]

        resistance = _nearest_above(swings.highs, entry)
        buffer = max(atr * TP_CLEARANCE_ATR, pip * TP_CLEARANCE_MIN_PIPS)
        metrics = {
            "tp_resistance_buffer_pips": round(buffer / pip, 2),
            "distance_to_resistance_pips": (
                round((resistance - entry) / pip, 2) if resistance is not None else None
            ),
            "bearish_pullback_candles": bearish_count,
            "retrace_pips": round(retrace / pip, 2),
        }
        if resistance is not None and take_profit >= resistance - buffer:
            return no_trade(
                "TP_NEAR_RESISTANCE",
                f"Target {take_profit:.5f} lacks clearance below resistance {resistance:.5f}.",
                ("H1_BULL", "TP_NEAR_RESISTANCE"),
                metrics,
            )

        return TradeIntent(
            decision="BUY",
            entry_type="MARKET",
            entry_price=round_price(entry, pair),
            stop_loss=round_price(stop_loss, pair),
            take_profit=round_price(take_profit, pair),
            reason_code="TRADE_READY",
            rationale=(
                f"H1=BULL (MA slope). Pullback confirmed: bearishCandles={bearish_count}, "
                f"retrace={retrace:.5f}, support={anchor}. RR target={p['rrTarget']}."
            ),
            tags=("H1_BULL", "M15_PULLBACK", "CONSERVATIVE"),
            metrics=metrics,
        )

    # ── SELL ─────────────────────────────────────────────────────────────

    def _evaluate_sell(self, context: MarketContext, m15: list[Candle], p: dict) -> TradeIntent:
        pair = context.pair
        pip = pip_size(pair)
        atr = context.indicators.atr_m15
        swings = context.indicators.swings_m15
        mid = context.price.mid

        recent_high = _nearest_above(swings.highs, mid)
        if recent_high is None:
            recent_high = max(list(swings.highs) + [c.high for c in m15[-8:]])
        recent_low = _nearest_below(swings.lows, mid)
        if recent_low is None:
            recent_low = min(list(swings.lows) + [c.low for c in m15[-8:]])

        bullish_count = _count_direction(m15, "bullish", 3)
        retrace = max(0.0, mid - recent_low)
        has_pullback = bullish_count >= 2 or retrace >= atr * p["pullbackAtrRatio"]
        resistance = _nearest_above(swings.highs, mid)
        near_resistance = (
            resistance is not None and (resistance - mid) <= atr * p["zoneAtrTolerance"]
        )

        if context.indicators.momentum_m15 == "STRONG_UP" and _last_direction(m15) == "bullish":
            return no_trade(
                "MOMENTUM_CONFLICT",
                "M15 momentum STRONG_UP: waiting for the pullback to stabilise before SELL.",
                ("MOMENTUM_CONFLICT",),
            )
        if not has_pullback:
            return no_trade("PULLBACK_MISSING", "No confirmed pullback for SELL.", ("PULLBACK_MISSING",))
        if not near_resistance:
            return no_trade(
                "NOT_NEAR_RESISTANCE",
                "Price is not in a resistance zone for a SELL pullback.",
                ("NOT_NEAR_RESISTANCE",),
            )

        entry = context.price.bid
        anchor = resistance if resistance is not None else recent_high
        sl_raw = anchor + atr * p["slAtrBuffer"]
        stop_loss = max(sl_raw, entry + _min_stop_distance(pair, atr, p["minSlAtr"]))
        risk = stop_loss - entry
        take_profit = entry - risk * p["rrTarget"]

        support = _nearest_below(swings.lows, entry)
        buffer = max(atr * TP_CLEARANCE_ATR, pip * TP_CLEARANCE_MIN_PIPS)
        metrics = {
            "tp_support_buffer_pips": round(buffer / pip, 2),
            "distance_to_support_pips": (
                round((entry - support) / pip, 2) if support is not None else None
            ),
            "bullish_pullback_candles": bullish_count,
            "retrace_pips": round(retrace / pip, 2),
        }
        if support is not None and take_profit <= support + buffer:
            return no_trade(
                "TP_NEAR_SUPPORT",
                f"Target {take_profit:.5f} lacks clearance above support {support:.5f}.",
                ("H1_BEAR", "TP_NEAR_SUPPORT"),
                metrics,
            )

        return TradeIntent(
            decision="SELL",
            entry_type="MARKET",
            entry_price=round_price(entry, pair),
            stop_loss=round_price(stop_loss, pair),
            take_profit=round_price(take_profit, pair),
            reason_code="TRADE_READY",
            rationale=(
                f"H1=BEAR (MA slope). Pullback confirmed: bullishCandles={bullish_count}, "
                f"retrace={retrace:.5f}, resistance={anchor}. RR target={p['rrTarget']}."
            ),
            tags=("H1_BEAR", "M15_PULLBACK", "CONSERVATIVE"),
            metrics=metrics,
        )
