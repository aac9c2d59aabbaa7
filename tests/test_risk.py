"""Tests for pairscan.risk.risk_checks."""

import pytest

from pairscan.broker.models import AccountSnapshot, OpenPosition, OpenTrade, PriceSnapshot
from pairscan.risk.risk_checks import (
    RiskCheckResult,
    RiskLimits,
    estimate_pip_value_usd,
    run_risk_checks,
    usd_delta_from_exposure,
)
from pairscan.strategy.models import IndicatorBundle, MarketContext, SwingLevels, TradeIntent, no_trade


def _context(
    pair: str = "EUR_USD",
    mid: float = 1.1000,
    spread: float = 1.0,
    account: AccountSnapshot | None = None,
) -> MarketContext:
    return MarketContext(
        pair=pair,
        now="2025-01-01T00:00:00Z",
        price=PriceSnapshot(bid=mid, ask=mid, mid=mid),
        spread_pips=spread,
        candles={},
        indicators=IndicatorBundle(
            atr_m15=0.001, atr_h1=0.002, swings_m15=SwingLevels(), trend_h1="BULL", momentum_m15="NEUTRAL",
        ),
        account=account or AccountSnapshot(balance=1000.0),
    )


def _intent(**overrides) -> TradeIntent:
    defaults = dict(
        decision="BUY",
        entry_price=1.1000,
        stop_loss=1.0994,
        take_profit=1.1010,
        reason_code="TRADE_READY",
    )
    defaults.update(overrides)
    return TradeIntent(**defaults)


class TestRiskCheckResult:
    def test_passed_derived_from_reasons(self):
        assert RiskCheckResult().passed is True
        assert RiskCheckResult(reasons=("nope",)).passed is False

    def test_to_dict(self):
        d = RiskCheckResult(reasons=("x",), sl_pips=6.0).to_dict()
        assert d == {"passed": False, "reasons": ["x"], "sl_pips": 6.0, "rr": 0.0, "risk_usd": 0.0}


class TestRunRiskChecks:
    def test_clean_intent_passes(self):
        result = run_risk_checks(_context(), _intent())
        assert result.passed
        assert result.sl_pips == pytest.approx(6.0)
        assert result.rr == pytest.approx(1.67)
        assert result.risk_usd == pytest.approx(0.6)

    def test_no_trade_short_circuits(self):
        result = run_risk_checks(_context(), no_trade("TREND_RANGE", "flat"))
        assert result.reasons == ("Intent decision is NO_TRADE.",)
        assert result.sl_pips == 0.0

    def test_malformed_prices(self):
        result = run_risk_checks(_context(), _intent(entry_price=0.0))
        assert result.reasons == ("Malformed intent price fields.",)

    def test_missing_stop(self):
        result = run_risk_checks(_context(), _intent(stop_loss=None))
        assert result.reasons == ("Malformed intent price fields.",)

    def test_zero_stop_distance(self):
        result = run_risk_checks(_context(), _intent(stop_loss=1.1000))
        assert "Invalid stop loss distance." in result.reasons
        assert result.rr == 0.0

    def test_risk_exceeds_limit(self):
        result = run_risk_checks(_context(), _intent(units=20000))
        assert not result.passed
        assert result.risk_usd == pytest.approx(12.0)
        assert "Risk 12.00 USD exceeds limit 6.0 USD." in result.reasons

    def test_max_concurrent_trades(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_trades=(OpenTrade(trade_id="1", instrument="GBP_USD", units=1000),),
        )
        result = run_risk_checks(_context(account=account), _intent())
        assert "Max concurrent trades reached (1)." in result.reasons

    def test_spread_too_wide(self):
        result = run_risk_checks(_context(spread=2.0), _intent())
        assert "Spread exceeds 20% of stop-loss distance." in result.reasons

    def test_rr_below_minimum(self):
        result = run_risk_checks(_context(), _intent(take_profit=1.1006))
        assert "Risk:Reward 1.00 below minimum 1.5." in result.reasons

    def test_collects_every_violation(self):
        result = run_risk_checks(_context(spread=2.0), _intent(take_profit=1.1006, units=20000))
        assert len(result.reasons) == 3

    def test_fifo_opposite_trade(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_trades=(OpenTrade(trade_id="7", instrument="EUR_USD", units=-1000),),
        )
        result = run_risk_checks(_context(account=account), _intent(), max_concurrent_trades=5)
        assert "FIFO conflict risk: opposite trade already open on same pair." in result.reasons

    def test_fifo_disabled(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_trades=(OpenTrade(trade_id="7", instrument="EUR_USD", units=-1000),),
            fifo_constraints=False,
        )
        result = run_risk_checks(_context(account=account), _intent(), max_concurrent_trades=5)
        assert not any("FIFO" in r for r in result.reasons)

    def test_fifo_same_size_with_risk_orders(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_trades=(OpenTrade(trade_id="9", instrument="EUR_USD", units=1000, has_risk_orders=True),),
        )
        result = run_risk_checks(_context(account=account), _intent(), max_concurrent_trades=5)
        fifo = [r for r in result.reasons if r.startswith("FIFO constraint")]
        assert len(fifo) == 1
        assert "trade 9" in fifo[0]
        assert "999 or 1001" in fifo[0]

    def test_open_position_on_pair(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_positions=(OpenPosition(instrument="EUR_USD", long_units=500),),
        )
        result = run_risk_checks(_context(account=account), _intent())
        assert "Open position already exists for this pair (simple mode)." in result.reasons

    def test_closed_position_ignored(self):
        account = AccountSnapshot(balance=1000.0, open_positions=(OpenPosition(instrument="EUR_USD"),))
        assert run_risk_checks(_context(account=account), _intent()).passed

    def test_correlated_usd_long_blocked(self):
        account = AccountSnapshot(
            balance=1000.0,
            open_trades=(OpenTrade(trade_id="3", instrument="USD_JPY", units=1000),),
        )
        ctx = _context(pair="USD_CHF", mid=0.9000, account=account)
        intent = _intent(entry_price=0.9000, stop_loss=0.8994, take_profit=0.9010)
        result = run_risk_checks(ctx, intent, max_concurrent_trades=5)
        assert result.reasons == ("Correlated exposure blocked: USD-long exposure already exists.",)

    def test_custom_limits(self):
        limits = RiskLimits(min_risk_reward=2.0)
        result = run_risk_checks(_context(), _intent(), limits=limits)
        assert "Risk:Reward 1.67 below minimum 2.0." in result.reasons


class TestExposureHelpers:
    def test_pip_value_usd_quote(self):
        assert estimate_pip_value_usd("EUR_USD", 1000, 1.1) == pytest.approx(0.1)

    def test_pip_value_usd_base(self):
        assert estimate_pip_value_usd("USD_JPY", 1000, 150.0) == pytest.approx(10 / 150.0)

    def test_pip_value_cross(self):
        assert estimate_pip_value_usd("EUR_GBP", 1000, 0.85) == pytest.approx(0.1)

    @pytest.mark.parametrize(
        "pair,units,expected",
        [
            ("USD_JPY", 1000, 1),
            ("USD_JPY", -1000, -1),
            ("EUR_USD", 1000, -1),
            ("EUR_USD", -1000, 1),
            ("EUR_GBP", 1000, 0),
            ("EUR_USD", 0, 0),
        ],
    )
    def test_usd_delta(self, pair, units, expected):
        assert usd_delta_from_exposure(pair, units) == expected
