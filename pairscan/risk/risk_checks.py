"""Risk checks — pure validation of a trade intent against account state.

Every applicable check runs and contributes a reason, so one cycle surfaces
every violated constraint at once.  Only a NO_TRADE intent or malformed
prices short-circuit.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from pairscan.strategy.models import MarketContext, TradeIntent, pip_size


@dataclass(frozen=True)
class RiskLimits:
    """Account-level limits the risk engine enforces."""

    fixed_units: int = 1000
    risk_per_trade_usd: float = 6.0
    min_risk_reward: float = 1.5
    max_spread_to_sl_ratio: float = 0.2


@dataclass(frozen=True)
class RiskCheckResult:
    """Outcome of ``run_risk_checks``.  ``passed`` iff ``reasons`` is empty."""

    reasons: tuple[str, ...] = ()
    sl_pips: float = 0.0
    rr: float = 0.0
    risk_usd: float = 0.0
    passed: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "passed", len(self.reasons) == 0)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "reasons": list(self.reasons),
            "sl_pips": self.sl_pips,
            "rr": self.rr,
            "risk_usd": self.risk_usd,
        }


# ── Exposure helpers ─────────────────────────────────────────────────────


def estimate_pip_value_usd(pair: str, units: float, current_price: float) -> float:
    """Approximate USD value of one pip for *units* of *pair*.

    USD-quoted pairs are exact; USD-based pairs divide by price; crosses
    fall back to ``units × pip`` without a cross-rate conversion.
    """
    pip = pip_size(pair)
    if pair.endswith("_USD"):
        return units * pip
    if pair.startswith("USD_") and current_price > 0:
        return units * pip / current_price
    return units * pip


def usd_delta_from_exposure(pair: str, units: float) -> int:
    """Directional USD exposure of a position: +1 long USD, -1 short USD."""
    base, _, quote = pair.partition("_")
    if not base or not quote or units == 0:
        return 0
    direction = 1 if units > 0 else -1
    delta = 0
    if base == "USD":
        delta += direction
    if quote == "USD":
        delta -= direction
    return delta


def _is_valid_price(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


# ── Checks ───────────────────────────────────────────────────────────────


def run_risk_checks(
    context: MarketContext,
    intent: TradeIntent,
    max_concurrent_trades: int = 1,
    limits: Optional[RiskLimits] = None,
) -> RiskCheckResult:
    """Validate *intent* against account state and *limits*.

    Args:
        context: Market context of the pair being evaluated.
        intent: The strategy's trade intent.
        max_concurrent_trades: Cap on simultaneously open trades.
        limits: Risk limits; defaults to ``RiskLimits()``.

    Returns:
        A ``RiskCheckResult``.  Numeric fields are rounded to 2 decimals
        and stay 0 when they could not be computed.
    """
    limits = limits or RiskLimits()
    max_concurrent_trades = max_concurrent_trades or 1
    account = context.account
    pair = context.pair

    if intent.decision == "NO_TRADE":
        return RiskCheckResult(reasons=("Intent decision is NO_TRADE.",))

    entry, stop, target = intent.entry_price, intent.stop_loss, intent.take_profit
    if not (_is_valid_price(entry) and _is_valid_price(stop) and _is_valid_price(target)):
        return RiskCheckResult(reasons=("Malformed intent price fields.",))

    reasons: list[str] = []
    units = intent.units if intent.units and intent.units > 0 else limits.fixed_units

    sl_distance = abs(entry - stop)
    tp_distance = abs(target - entry)
    sl_pips = sl_distance / pip_size(pair)
    rr = tp_distance / sl_distance if sl_distance > 0 else 0.0

    if sl_distance <= 0 or sl_pips <= 0:
        reasons.append("Invalid stop loss distance.")

    risk_usd = sl_pips * estimate_pip_value_usd(pair, units, context.price.mid)
    if risk_usd > limits.risk_per_trade_usd:
        reasons.append(
            f"Risk {risk_usd:.2f} USD exceeds limit {limits.risk_per_trade_usd} USD."
        )

    if len(account.open_trades) >= max_concurrent_trades:
        reasons.append(f"Max concurrent trades reached ({max_concurrent_trades}).")

    if context.spread_pips > sl_pips * limits.max_spread_to_sl_ratio:
        reasons.append(
            f"Spread exceeds {limits.max_spread_to_sl_ratio * 100:.0f}% of stop-loss distance."
        )

    if rr < limits.min_risk_reward:
        reasons.append(f"Risk:Reward {rr:.2f} below minimum {limits.min_risk_reward}.")

    same_pair_trades = [t for t in account.open_trades if t.instrument == pair]

    if account.fifo_constraints:
        opposite = any(
            (intent.decision == "BUY" and t.units < 0)
            or (intent.decision == "SELL" and t.units > 0)
            for t in same_pair_trades
        )
        if opposite:
            reasons.append("FIFO conflict risk: opposite trade already open on same pair.")

        requested = abs(units)
        clash = next(
            (t for t in same_pair_trades if abs(t.units) == requested and t.has_risk_orders),
            None,
        )
        if clash is not None:
            reasons.append(
                f"FIFO constraint: existing trade {clash.trade_id} already uses "
                f"{requested:g} units on {pair} with TP/SL/TS. Use a unique unit size "
                f"(e.g., {max(1, requested - 1):g} or {requested + 1:g})."
            )

    if any(p.instrument == pair and p.is_open for p in account.open_positions):
        reasons.append("Open position already exists for this pair (simple mode).")

    existing_usd = sum(usd_delta_from_exposure(t.instrument, t.units) for t in account.open_trades)
    candidate_units = limits.fixed_units if intent.decision == "BUY" else -limits.fixed_units
    candidate_usd = usd_delta_from_exposure(pair, candidate_units)
    if existing_usd > 0 and candidate_usd > 0:
        reasons.append("Correlated exposure blocked: USD-long exposure already exists.")

    return RiskCheckResult(
        reasons=tuple(reasons),
        sl_pips=round(sl_pips, 2),
        rr=round(rr, 2),
        risk_usd=round(risk_usd, 2),
    )
