"""Range Fade (Flat) strategy.

Implements ``StrategyPlugin``.  Fades the boundaries of a quiet, well-defined
M15 range: BUY near the range low, SELL near the range high, targeting the
midline (or a fixed pip distance).

Emits normalized 0–1 diagnostics (ATR stability, boundary proximity,
touch density, RSI edge) that the scoring engine folds into its
range-fade boost.
"""

from typing import Optional

from pairscan.broker.models import Candle
from pairscan.strategy.base import ParamSpec, resolve_params
from pairscan.strategy.indicators import ATR_PERIOD, calculate_rsi
from pairscan.strategy.models import TradeIntent, MarketContext, no_trade, pip_size, round_price

MIN_WINDOW_BARS = 20
MAX_WINDOW_BARS = 48
TP_MODES = ("MIDLINE", "FIXED_TP_PIPS")


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _atr_pips(candles: list[Candle], period: int, pip: float) -> Optional[float]:
    """Unrounded ATR over the trailing *period* bars, expressed in pips."""
    if len(candles) < period + 1:
        return None
    tr_sum = 0.0
    for i in range(len(candles) - period, len(candles)):
        current = candles[i]
        prev_close = candles[i - 1].close
        tr_sum += max(
            current.high - current.low,
            abs(current.high - prev_close),
            abs(current.low - prev_close),
        )
    return (tr_sum / period) / pip


def count_boundary_touches(
    candles: list[Candle],
    range_low: float,
    range_high: float,
    tolerance: float,
) -> int:
    """Count bars whose low or high came within *tolerance* of a boundary."""
    return sum(
        1 for c in candles
        if abs(c.low - range_low) <= tolerance or abs(c.high - range_high) <= tolerance
    )


class RangeFadeStrategy:
    """Mean-reversion entries at the edges of a flat M15 range.

    Gates, in order: news window, spread, candle history, ATR, ATR ceiling,
    range width, boundary touches, entry band, RSI, reward:risk.
    """

    ID = "flat_range_v1"
    NAME = "Range Fade (Flat) v1"
    VERSION = "1.0.0"
    REQUIRED_TIMEFRAMES = ("M15", "H1")
    PARAMETERS = (
        ParamSpec("units", "integer", "Fixed units per trade", 1000),
        ParamSpec("rangeWindowBars", "integer", "Bars for range detection", 32),
        ParamSpec("atrMaxPips", "number", "Max ATR(14) in pips for flat regime", 12.0),
        ParamSpec("minRangePips", "number", "Minimum acceptable range size in pips", 8.0),
        ParamSpec("maxRangePips", "number", "Maximum acceptable range size in pips", 35.0),
        ParamSpec("entryBandPips", "number", "Distance to boundary for entry setup", 3.0),
        ParamSpec("maxSpreadPips", "number", "Maximum allowed spread", 2.2),
        ParamSpec("slBufferPips", "number", "Stop-loss buffer beyond range boundary", 1.7),
        ParamSpec("tpMode", "string", "FIXED_TP_PIPS or MIDLINE", "MIDLINE"),
        ParamSpec("tpPips", "number", "Fixed TP distance (used in FIXED_TP_PIPS mode)", 10.0),
        ParamSpec("minRiskReward", "number", "Minimum RR threshold", 1.1),
        ParamSpec("rsiEnabled", "boolean", "Enable RSI filter", True),
        ParamSpec("rsiPeriod", "integer", "RSI period", 14),
        ParamSpec("rsiBuyMax", "number", "RSI max for BUY setup", 45.0),
        ParamSpec("rsiSellMin", "number", "RSI min for SELL setup", 55.0),
        ParamSpec("minTouchCount", "integer", "Min boundary touches for stable range", 2),
        ParamSpec("enableNewsWindowFilter", "boolean", "Block trading around high-impact news", False),
        ParamSpec("inNewsWindow", "boolean", "External flag indicating news window", False),
    )

    def evaluate(self, context: MarketContext, params: dict) -> TradeIntent:
        """Run the range-fade evaluation for one pair."""
        p = resolve_params(self.PARAMETERS, params)
        pair = context.pair
        pip = pip_size(pair)
        m15 = context.candles_for("M15")

        units = max(1, p["units"])
        window = max(MIN_WINDOW_BARS, min(MAX_WINDOW_BARS, p["rangeWindowBars"]))
        tp_mode = p["tpMode"].upper()
        if tp_mode not in TP_MODES:
            tp_mode = "MIDLINE"
        rsi_period = max(2, p["rsiPeriod"])
        min_touch_count = max(1, p["minTouchCount"])
        atr_max = p["atrMaxPips"]
        entry_band = p["entryBandPips"]

        if p["enableNewsWindowFilter"] and p["inNewsWindow"]:
            return no_trade("NEAR_NEWS_WINDOW", "Near a high-impact news window.", ("RANGE_FADE", "NEWS_BLOCK"))

        if context.spread_pips > p["maxSpreadPips"]:
            return no_trade(
                "SPREAD_TOO_WIDE",
                f"Spread too wide ({context.spread_pips:.2f} > {p['maxSpreadPips']:.2f}).",
                ("RANGE_FADE", "SPREAD_FILTER"),
                {
                    "spread_pips": round(context.spread_pips, 2),
                    "max_spread_pips": round(p["maxSpreadPips"], 2),
                },
            )

        if len(m15) < window + 1:
            return no_trade(
                "DATA_UNAVAILABLE",
                "Not enough M15 candles for range detection.",
                ("RANGE_FADE", "DATA_UNAVAILABLE"),
                {"required_bars": window + 1, "available_bars": len(m15)},
            )

        window_candles = m15[-window:]
        range_high = max(c.high for c in window_candles)
        range_low = min(c.low for c in window_candles)
        range_mid = (range_high + range_low) / 2
        range_size_pips = (range_high - range_low) / pip
        atr_pips = _atr_pips(m15, ATR_PERIOD, pip)

        if atr_pips is None or atr_pips <= 0:
            return no_trade(
                "DATA_UNAVAILABLE",
                "ATR cannot be calculated.",
                ("RANGE_FADE", "DATA_UNAVAILABLE"),
            )

        if atr_pips > atr_max:
            return no_trade(
                "NOT_RANGE_BOUND",
                f"Market not range-bound (ATR {atr_pips:.2f} pips > {atr_max:.2f}).",
                ("RANGE_FADE", "NOT_RANGE_BOUND"),
                {"atr_pips": round(atr_pips, 2), "atr_max_pips": round(atr_max, 2)},
            )

        if range_size_pips < p["minRangePips"] or range_size_pips > p["maxRangePips"]:
            return no_trade(
                "RANGE_SIZE_OUT_OF_BOUNDS",
                f"Range size out of bounds ({range_size_pips:.2f} pips).",
                ("RANGE_FADE", "RANGE_FILTER"),
                {
                    "range_size_pips": round(range_size_pips, 2),
                    "min_range_pips": round(p["minRangePips"], 2),
                    "max_range_pips": round(p["maxRangePips"], 2),
                },
            )

        tolerance = max(entry_band * pip, 0.5 * pip)
        touch_count = count_boundary_touches(window_candles, range_low, range_high, tolerance)
        if touch_count < min_touch_count:
            return no_trade(
                "RANGE_UNSTABLE",
                f"Range is unstable (touches {touch_count} < {min_touch_count}).",
                ("RANGE_FADE", "RANGE_UNSTABLE"),
                {"touch_count": touch_count, "min_touch_count": min_touch_count},
            )

        mid = context.price.mid
        dist_low = (mid - range_low) / pip
        dist_high = (range_high - mid) / pip
        near_low = dist_low <= entry_band
        near_high = dist_high <= entry_band

        if not near_low and not near_high:
            return no_trade(
                "ENTRY_BAND_MISS",
                "Price not near range boundaries.",
                ("RANGE_FADE", "ENTRY_BAND_MISS"),
                {
                    "distance_to_low_pips": round(dist_low, 2),
                    "distance_to_high_pips": round(dist_high, 2),
                    "entry_band_pips": round(entry_band, 2),
                },
            )

        side = "BUY" if near_low and (not near_high or dist_low <= dist_high) else "SELL"
        rsi = calculate_rsi(m15, rsi_period)

        if p["rsiEnabled"] and rsi is not None:
            if side == "BUY" and rsi > p["rsiBuyMax"]:
                return no_trade(
                    "RSI_FILTER_BLOCK",
                    f"RSI filter blocks BUY ({rsi:.2f} > {p['rsiBuyMax']:.2f}).",
                    ("RANGE_FADE", "RSI_FILTER"),
                    {"rsi": round(rsi, 2), "rsi_buy_max": round(p["rsiBuyMax"], 2)},
                )
            if side == "SELL" and rsi < p["rsiSellMin"]:
                return no_trade(
                    "RSI_FILTER_BLOCK",
                    f"RSI filter blocks SELL ({rsi:.2f} < {p['rsiSellMin']:.2f}).",
                    ("RANGE_FADE", "RSI_FILTER"),
                    {"rsi": round(rsi, 2), "rsi_sell_min": round(p["rsiSellMin"], 2)},
                )

        sl_buffer = p["slBufferPips"] * pip
        if side == "BUY":
            entry = context.price.ask
            stop_loss = range_low - sl_buffer
        else:
            entry = context.price.bid
            stop_loss = range_high + sl_buffer

        if tp_mode == "FIXED_TP_PIPS":
            offset = p["tpPips"] * pip
            take_profit = entry + offset if side == "BUY" else entry - offset
        else:
            take_profit = range_mid

        risk = abs(entry - stop_loss)
        reward = abs(take_profit - entry)
        rr = reward / risk if risk > 0 else 0.0

        if rr < p["minRiskReward"]:
            return no_trade(
                "RR_TOO_LOW",
                f"RR {rr:.2f} below minimum {p['minRiskReward']:.2f}.",
                ("RANGE_FADE", "RR_FILTER"),
                {"rr": round(rr, 2), "min_rr": round(p["minRiskReward"], 2)},
            )

        boundary_distance = min(dist_low, dist_high)
        if rsi is None:
            rsi_edge = 0.5
        elif side == "BUY":
            rsi_edge = _clamp01((p["rsiBuyMax"] - rsi) / max(p["rsiBuyMax"], 1.0))
        else:
            rsi_edge = _clamp01((rsi - p["rsiSellMin"]) / max(100.0 - p["rsiSellMin"], 1.0))

        metrics = {
            "atr_pips": round(atr_pips, 2),
            "atr_stability_score": round(_clamp01((atr_max - atr_pips) / max(atr_max, 0.0001)), 3),
            "range_size_pips": round(range_size_pips, 2),
            "boundary_distance_pips": round(boundary_distance, 2),
            "boundary_proximity_score": round(
                _clamp01(1 - boundary_distance / max(entry_band, 0.0001)), 3
            ),
            "touch_count": touch_count,
            "touch_density_score": round(_clamp01(touch_count / max(min_touch_count + 2, 1)), 3),
            "rsi": round(rsi, 2) if rsi is not None else None,
            "rsi_edge_score": round(rsi_edge, 3),
            "rr": round(rr, 2),
        }

        boundary = "range low" if side == "BUY" else "range high"
        return TradeIntent(
            decision=side,
            entry_type="MARKET",
            entry_price=round_price(entry, pair),
            stop_loss=round_price(stop_loss, pair),
            take_profit=round_price(take_profit, pair),
            units=units,
            reason_code="TRADE_READY",
            rationale=(
                f"Range Fade: {side} near {boundary}; range={range_size_pips:.2f} pips, "
                f"ATR={atr_pips:.2f} pips, RR={rr:.2f}."
            ),
            tags=("RANGE_FADE", "MEAN_REVERSION", f"TP_{tp_mode}"),
            metrics=metrics,
        )
