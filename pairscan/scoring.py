"""Trade quality scoring — weighted 0–100 score with hard rejection filters.

Pure math, no I/O.  Runs after the risk checks; a trade that passes risk
can still be rejected here by the RR scoring floor or the spread filter.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from pairscan.strategy.models import MarketContext, TradeIntent, pip_size

RR_SCORING_FLOOR = 1.2
RANGE_FADE_BOOST_WEIGHT = 0.25


@dataclass(frozen=True)
class ScoringWeights:
    """Relative weights of the four sub-scores."""

    rr_weight: float = 0.4
    trend_clarity_weight: float = 0.3
    spread_weight: float = 0.2
    distance_from_sr_weight: float = 0.1

    def to_dict(self) -> dict:
        return {
            "rrWeight": self.rr_weight,
            "trendClarityWeight": self.trend_clarity_weight,
            "spreadWeight": self.spread_weight,
            "distanceFromSRWeight": self.distance_from_sr_weight,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of ``calculate_score``.  ``passed`` iff no rejection reasons."""

    score: float = 0.0
    rr: float = 0.0
    rejection_reasons: tuple[str, ...] = ()
    passed: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "passed", len(self.rejection_reasons) == 0)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "score": self.score,
            "rr": self.rr,
            "rejection_reasons": list(self.rejection_reasons),
        }


# ── Sub-scores ───────────────────────────────────────────────────────────


def compute_risk_reward(entry: float, stop_loss: float, take_profit: float) -> float:
    """``|target - entry| / |entry - stop|``, or 0 for a zero stop distance."""
    risk = abs(entry - stop_loss)
    if risk <= 0:
        return 0.0
    return abs(take_profit - entry) / risk


def normalize_risk_reward(rr: float) -> Optional[float]:
    """Step-normalize RR; ``None`` means below the scoring floor."""
    if rr >= 2.0:
        return 1.0
    if rr >= 1.5:
        return 0.8
    if rr >= RR_SCORING_FLOOR:
        return 0.5
    return None


def trend_clarity(context: MarketContext) -> float:
    trend = context.indicators.trend_h1
    momentum = context.indicators.momentum_m15
    if trend == "RANGE":
        return 0.0
    if (trend == "BULL" and momentum == "STRONG_UP") or (
        trend == "BEAR" and momentum == "STRONG_DOWN"
    ):
        return 1.0
    return 0.5


def spread_quality(spread_pips: float, sl_pips: float, max_ratio: float = 0.2) -> Optional[float]:
    """1.0 within half the allowed ratio, 0.7 within it, ``None`` beyond."""
    ratio = spread_pips / sl_pips if sl_pips > 0 else 1.0
    if ratio <= max_ratio / 2:
        return 1.0
    if ratio <= max_ratio:
        return 0.7
    return None


def sr_distance_quality(intent: TradeIntent, context: MarketContext, sl_pips: float) -> float:
    """Room to the nearest opposing swing level, relative to the stop distance."""
    entry = intent.entry_price or 0.0
    if entry <= 0 or sl_pips <= 0:
        return 0.2

    sl_distance = sl_pips * pip_size(context.pair)
    swings = context.indicators.swings_m15
    if intent.decision == "BUY":
        distances = [lvl - entry for lvl in swings.highs if lvl > entry]
    else:
        distances = [entry - lvl for lvl in swings.lows if lvl < entry]

    ratio = min(distances) / sl_distance if distances else 2.0
    if ratio > 1.5:
        return 1.0
    if ratio >= 1.0:
        return 0.6
    return 0.2


def _metric_score(metrics: dict, key: str) -> Optional[float]:
    value = metrics.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return max(0.0, min(1.0, float(value)))


def range_fade_signal_quality(intent: TradeIntent) -> float:
    """Blend of the range-fade diagnostics; 0 for any other strategy."""
    if "RANGE_FADE" not in intent.tags:
        return 0.0

    def pick(key: str) -> float:
        value = _metric_score(intent.metrics, key)
        return 0.5 if value is None else value

    return (
        pick("atr_stability_score") * 0.3
        + pick("boundary_proximity_score") * 0.3
        + pick("rsi_edge_score") * 0.2
        + pick("touch_density_score") * 0.2
    )


# ── Entry point ──────────────────────────────────────────────────────────


def calculate_score(
    intent: TradeIntent,
    context: MarketContext,
    weights: Optional[ScoringWeights] = None,
    max_spread_ratio: float = 0.2,
) -> ScoreResult:
    """Score a risk-approved intent.

    Args:
        intent: Trade intent to score.
        context: Market context the intent was produced from.
        weights: Sub-score weights; defaults to ``ScoringWeights()``.
        max_spread_ratio: Spread / stop-distance ratio beyond which the
            intent is rejected.

    Returns:
        A ``ScoreResult`` with a 0–100 score rounded to 2 decimals.
    """
    weights = weights or ScoringWeights()

    if intent.decision == "NO_TRADE":
        return ScoreResult(rejection_reasons=("Intent decision is NO_TRADE.",))

    entry = intent.entry_price or 0.0
    stop_loss = intent.stop_loss or 0.0
    take_profit = intent.take_profit or 0.0
    prices = (entry, stop_loss, take_profit)
    if any(not math.isfinite(p) or p <= 0 for p in prices):
        return ScoreResult(rejection_reasons=("Malformed intent prices for scoring.",))

    sl_pips = abs(entry - stop_loss) / pip_size(context.pair)
    rr = compute_risk_reward(entry, stop_loss, take_profit)

    reasons: list[str] = []
    rr_score = normalize_risk_reward(rr)
    if rr_score is None:
        reasons.append(f"Risk:Reward {rr:.2f} below scoring floor {RR_SCORING_FLOOR}.")

    spread_score = spread_quality(context.spread_pips, sl_pips, max_spread_ratio)
    if spread_score is None:
        reasons.append(
            f"Spread exceeds {max_spread_ratio * 100:.0f}% of stop-loss distance (scoring filter)."
        )

    if reasons:
        return ScoreResult(rr=round(rr, 2), rejection_reasons=tuple(reasons))

    weighted = (
        rr_score * weights.rr_weight
        + trend_clarity(context) * weights.trend_clarity_weight
        + spread_score * weights.spread_weight
        + sr_distance_quality(intent, context, sl_pips) * weights.distance_from_sr_weight
    )
    boosted = min(1.0, weighted + range_fade_signal_quality(intent) * RANGE_FADE_BOOST_WEIGHT)

    return ScoreResult(
        score=round(max(0.0, min(1.0, boosted)) * 100, 2),
        rr=round(rr, 2),
    )
