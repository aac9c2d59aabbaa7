"""Technical indicators — ATR, SMA, RSI, trend, momentum, swing levels. Pure functions, no I/O.

Insufficient data never raises: every indicator degrades to a neutral
value (0, ``RANGE``, ``NEUTRAL``, no swings) so a thin candle history
cannot block the scan.
"""

import math
from typing import Optional

from pairscan.broker.models import Candle, RawMarketData
from pairscan.strategy.models import (
    IndicatorBundle,
    MarketContext,
    Momentum,
    SwingLevels,
    Trend,
)

ATR_PERIOD = 14
TREND_FAST_SMA = 20
TREND_SLOW_SMA = 50
TREND_MIN_CLOSES = 60
MOMENTUM_BARS = 6
MOMENTUM_ATR_MULT = 0.6
SWING_RADIUS = 2
MAX_SWINGS = 8


def calculate_atr(candles: list[Candle], period: int = ATR_PERIOD) -> float:
    """Calculate the Average True Range over *period* candles.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` candles (need a previous close for TR).
    Returns the simple average of the last *period* true ranges rounded
    to 5 decimals, or ``0.0`` when there is not enough data.
    """
    if len(candles) < period + 1:
        return 0.0

    true_ranges: list[float] = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        tr = max(
            high - low,
            abs(high - prev_close),
            abs(low - prev_close),
        )
        true_ranges.append(tr)

    recent = true_ranges[-period:]
    return round(sum(recent) / len(recent), 5)


def sma(values: list[float], period: int) -> float:
    """Simple moving average of the last *period* values (0.0 when empty)."""
    sample = values[-period:]
    if not sample:
        return 0.0
    return sum(sample) / len(sample)


def calculate_rsi(candles: list[Candle], period: int = 14) -> Optional[float]:
    """RSI over the last *period* close-to-close changes.

    Plain averages of gains and losses (no Wilder smoothing).  Returns
    ``None`` with fewer than ``period + 1`` candles and ``100.0`` when
    there were no losses.
    """
    if len(candles) < period + 1:
        return None

    gains = 0.0
    losses = 0.0
    for i in range(len(candles) - period, len(candles)):
        change = candles[i].close - candles[i - 1].close
        if change > 0:
            gains += change
        else:
            losses += abs(change)

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def detect_h1_trend(candles_h1: list[Candle]) -> Trend:
    """Classify the H1 trend from the SMA(20)/SMA(50) spread and SMA(20) slope.

    Rules:
        - **BULL**: SMA20 > SMA50 and SMA20 rising over the last bar.
        - **BEAR**: SMA20 < SMA50 and SMA20 falling over the last bar.
        - **RANGE**: everything else, or fewer than 60 usable closes.
    """
    closes = [
        c.close for c in candles_h1
        if math.isfinite(c.close) and c.close > 0
    ]
    if len(closes) < TREND_MIN_CLOSES:
        return "RANGE"

    fast = sma(closes, TREND_FAST_SMA)
    slow = sma(closes, TREND_SLOW_SMA)
    prev_fast = sma(closes[:-1], TREND_FAST_SMA)

    slope = fast - prev_fast
    spread = fast - slow

    if spread > 0 and slope > 0:
        return "BULL"
    if spread < 0 and slope < 0:
        return "BEAR"
    return "RANGE"


def detect_momentum(candles_m15: list[Candle], atr_m15: float) -> Momentum:
    """Classify short-term momentum from the close change over 6 bars.

    The change between the first and last close of the 6-bar window is
    compared against ``0.6 × ATR(M15)``.
    """
    if len(candles_m15) < MOMENTUM_BARS or atr_m15 <= 0:
        return "NEUTRAL"

    window = candles_m15[-MOMENTUM_BARS:]
    delta = window[-1].close - window[0].close

    if delta >= atr_m15 * MOMENTUM_ATR_MULT:
        return "STRONG_UP"
    if delta <= -atr_m15 * MOMENTUM_ATR_MULT:
        return "STRONG_DOWN"
    return "NEUTRAL"


def detect_swing_levels(
    candles: list[Candle],
    radius: int = SWING_RADIUS,
    keep: int = MAX_SWINGS,
) -> SwingLevels:
    """Identify swing highs and lows.

    A swing high is a candle whose high is strictly higher than the highs
    of the *radius* candles on each side (mirror rule for swing lows).
    Only the most recent *keep* levels of each kind are returned.
    """
    highs: list[float] = []
    lows: list[float] = []
    for i in range(radius, len(candles) - radius):
        neighbours = candles[i - radius:i] + candles[i + 1:i + 1 + radius]
        high = candles[i].high
        low = candles[i].low
        if all(high > c.high for c in neighbours):
            highs.append(round(high, 5))
        if all(low < c.low for c in neighbours):
            lows.append(round(low, 5))

    return SwingLevels(highs=tuple(highs[-keep:]), lows=tuple(lows[-keep:]))


def compute_indicators(candles: dict[str, list[Candle]]) -> IndicatorBundle:
    """Derive the indicator bundle from raw M15/H1 candle series."""
    m15 = candles.get("M15", [])
    h1 = candles.get("H1", [])

    atr_m15 = calculate_atr(m15)
    return IndicatorBundle(
        atr_m15=atr_m15,
        atr_h1=calculate_atr(h1),
        swings_m15=detect_swing_levels(m15),
        trend_h1=detect_h1_trend(h1),
        momentum_m15=detect_momentum(m15, atr_m15),
    )


def build_market_context(raw: RawMarketData) -> MarketContext:
    """Wrap raw broker data and its indicators into a ``MarketContext``."""
    return MarketContext(
        pair=raw.pair,
        now=raw.now,
        price=raw.price,
        spread_pips=raw.spread_pips,
        candles=raw.candles,
        indicators=compute_indicators(raw.candles),
        account=raw.account,
    )
