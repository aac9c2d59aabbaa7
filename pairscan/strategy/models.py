"""Strategy data models — typed representations for strategy inputs and outputs."""

from dataclasses import dataclass, field
from typing import Literal, Optional, Union

from pairscan.broker.models import AccountSnapshot, Candle, PriceSnapshot

Decision = Literal["BUY", "SELL", "NO_TRADE"]
EntryType = Literal["MARKET", "LIMIT"]
Trend = Literal["BULL", "BEAR", "RANGE"]
Momentum = Literal["STRONG_UP", "STRONG_DOWN", "NEUTRAL"]

MetricValue = Union[float, int, str, bool, None]


# ── Instrument metadata ──────────────────────────────────────────────────


def pip_size(pair: str) -> float:
    """Return the pip size: 0.01 for JPY-quoted pairs, 0.0001 otherwise."""
    return 0.01 if "JPY" in pair else 0.0001


def round_price(price: float, pair: str) -> float:
    """Round to the broker's quote precision (3 digits for JPY, else 5)."""
    return round(price, 3 if "JPY" in pair else 5)


# ── Indicators / context ─────────────────────────────────────────────────


@dataclass(frozen=True)
class SwingLevels:
    """Recent local extrema on M15, oldest-first, at most 8 of each."""

    highs: tuple[float, ...] = ()
    lows: tuple[float, ...] = ()


@dataclass(frozen=True)
class IndicatorBundle:
    """Volatility / trend / momentum / S-R summary for one pair."""

    atr_m15: float
    atr_h1: float
    swings_m15: SwingLevels
    trend_h1: Trend
    momentum_m15: Momentum


@dataclass(frozen=True)
class MarketContext:
    """Immutable per-cycle view of one pair handed to a strategy."""

    pair: str
    now: str
    price: PriceSnapshot
    spread_pips: float
    candles: dict[str, list[Candle]]
    indicators: IndicatorBundle
    account: AccountSnapshot

    def candles_for(self, timeframe: str) -> list[Candle]:
        return self.candles.get(timeframe, [])


# ── Strategy output ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradeIntent:
    """What a strategy wants to do with a pair this cycle."""

    decision: Decision
    entry_type: EntryType = "MARKET"
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    units: Optional[int] = None
    reason_code: str = ""
    rationale: str = ""
    tags: tuple[str, ...] = ()
    metrics: dict[str, MetricValue] = field(default_factory=dict)

    @property
    def is_trade(self) -> bool:
        return self.decision != "NO_TRADE"

    def to_dict(self) -> dict:
        return {
            "decision": self.decision,
            "entry_type": self.entry_type,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "units": self.units,
            "reason_code": self.reason_code,
            "rationale": self.rationale,
            "tags": list(self.tags),
            "metrics": dict(self.metrics),
        }


def no_trade(
    reason_code: str,
    rationale: str,
    tags: tuple[str, ...] = (),
    metrics: Optional[dict[str, MetricValue]] = None,
) -> TradeIntent:
    """Build a NO_TRADE intent."""
    return TradeIntent(
        decision="NO_TRADE",
        reason_code=reason_code,
        rationale=rationale,
        tags=tags,
        metrics=metrics or {},
    )
