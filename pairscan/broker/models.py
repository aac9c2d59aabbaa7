"""Broker data models — typed representations of OANDA v20 API objects."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    complete: bool = True


@dataclass(frozen=True)
class PriceSnapshot:
    """Current quote for an instrument."""

    bid: float
    ask: float
    mid: float

    @classmethod
    def from_quote(cls, bid: float, ask: float) -> "PriceSnapshot":
        """Build a snapshot, deriving mid from bid/ask when both are present."""
        mid = (bid + ask) / 2 if bid > 0 and ask > 0 else 0.0
        return cls(bid=bid, ask=ask, mid=mid)


@dataclass(frozen=True)
class AccountSummary:
    """Summary of an OANDA account."""

    account_id: str
    balance: float
    equity: float
    open_position_count: int
    currency: str


@dataclass(frozen=True)
class OpenPosition:
    """Net exposure on one instrument."""

    instrument: str
    long_units: float = 0.0
    short_units: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.long_units != 0 or self.short_units != 0


@dataclass(frozen=True)
class OpenTrade:
    """An open trade with the metadata needed for FIFO checks."""

    trade_id: str
    instrument: str
    units: float  # signed: positive=long, negative=short
    has_risk_orders: bool = False


@dataclass(frozen=True)
class AccountSnapshot:
    """Account state captured alongside market data for one pair."""

    balance: float
    open_positions: tuple[OpenPosition, ...] = ()
    open_trades: tuple[OpenTrade, ...] = ()
    fifo_constraints: bool = True


@dataclass(frozen=True)
class RawMarketData:
    """Everything the scanner needs about one pair, straight from the broker."""

    pair: str
    now: str
    price: PriceSnapshot
    spread_pips: float
    candles: dict[str, list[Candle]]
    account: AccountSnapshot
