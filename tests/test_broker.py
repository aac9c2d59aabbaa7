"""Tests for pairscan.broker — OANDA client and trade executor with mocked HTTP responses."""

from unittest.mock import AsyncMock

import httpx
import pytest

from pairscan.broker.executor import TradeExecutor
from pairscan.broker.models import AccountSummary, Candle, OpenPosition, OpenTrade
from pairscan.broker.oanda_client import OandaClient
from pairscan.config import Config
from pairscan.strategy.models import TradeIntent, no_trade


def _make_config(environment: str = "practice") -> Config:
    return Config(
        oanda_account_id="101-001-12345678-001",
        oanda_api_token="test-token",
        oanda_environment=environment,
        m15_candle_count=3,
        h1_candle_count=3,
    )


# ── Mock OANDA responses ────────────────────────────────────────────────

MOCK_CANDLES_RESPONSE = {
    "instrument": "EUR_USD",
    "granularity": "M15",
    "candles": [
        {
            "complete": True,
            "volume": 12345,
            "time": "2025-01-10T00:00:00.000000000Z",
            "mid": {"o": "1.09100", "h": "1.09500", "l": "1.08900", "c": "1.09300"},
        },
        {
            "complete": True,
            "volume": 11000,
            "time": "2025-01-10T00:15:00.000000000Z",
            "mid": {"o": "1.09300", "h": "1.09700", "l": "1.09100", "c": "1.09600"},
        },
        {
            "complete": False,
            "volume": 300,
            "time": "2025-01-10T00:30:00.000000000Z",
            "mid": {"o": "1.09600", "h": "1.09650", "l": "1.09550", "c": "1.09610"},
        },
    ],
}

MOCK_PRICING_RESPONSE = {
    "prices": [
        {
            "instrument": "EUR_USD",
            "closeoutBid": "1.09590",
            "closeoutAsk": "1.09602",
            "bids": [{"price": "1.09591"}],
            "asks": [{"price": "1.09601"}],
        }
    ]
}

MOCK_ACCOUNT_RESPONSE = {
    "account": {
        "id": "101-001-12345678-001",
        "balance": "10000.00",
        "NAV": "10150.50",
        "openPositionCount": "1",
        "currency": "USD",
    }
}

MOCK_POSITIONS_RESPONSE = {
    "positions": [
        {
            "instrument": "EUR_USD",
            "long": {"units": "1000", "averagePrice": "1.09300"},
            "short": {"units": "0"},
            "unrealizedPL": "20.00",
        }
    ]
}

MOCK_TRADES_RESPONSE = {
    "trades": [
        {"id": "41", "instrument": "EUR_USD", "currentUnits": "1000", "stopLossOrder": {"id": "42"}},
        {"id": "43", "instrument": "USD_JPY", "currentUnits": "-500"},
    ]
}

MOCK_ORDER_FILL_RESPONSE = {
    "orderFillTransaction": {
        "id": "12345",
        "instrument": "EUR_USD",
        "units": "1000",
        "price": "1.09500",
    }
}


def _route(url: str) -> dict:
    if url.endswith("/candles"):
        return MOCK_CANDLES_RESPONSE
    if url.endswith("/pricing"):
        return MOCK_PRICING_RESPONSE
    if url.endswith("/summary"):
        return MOCK_ACCOUNT_RESPONSE
    if url.endswith("/openPositions"):
        return MOCK_POSITIONS_RESPONSE
    if url.endswith("/openTrades"):
        return MOCK_TRADES_RESPONSE
    raise AssertionError(f"Unexpected URL {url}")


# ── Client tests ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_candles(monkeypatch):
    """Candle dataclass fields populated correctly from mock JSON."""
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(200, json=MOCK_CANDLES_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("EUR_USD", "M15", count=3)
    assert len(candles) == 3
    c = candles[0]
    assert isinstance(c, Candle)
    assert c.open == pytest.approx(1.091)
    assert c.high == pytest.approx(1.095)
    assert c.low == pytest.approx(1.089)
    assert c.close == pytest.approx(1.093)
    assert c.volume == 12345
    assert c.complete is True
    assert candles[2].complete is False


@pytest.mark.asyncio
async def test_pricing_prefers_closeout(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        assert params == {"instruments": "EUR_USD"}
        return httpx.Response(200, json=MOCK_PRICING_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    price = await client.get_pricing("EUR_USD")
    assert price.bid == pytest.approx(1.0959)
    assert price.ask == pytest.approx(1.09602)
    assert price.mid == pytest.approx(1.09596)


@pytest.mark.asyncio
async def test_pricing_falls_back_to_book(monkeypatch):
    client = OandaClient(_make_config())
    body = {"prices": [{"bids": [{"price": "1.1000"}], "asks": [{"price": "1.1002"}]}]}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(200, json=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    price = await client.get_pricing("EUR_USD")
    assert price.bid == pytest.approx(1.1)
    assert price.ask == pytest.approx(1.1002)


@pytest.mark.asyncio
async def test_account_summary(monkeypatch):
    """Balance and equity parsed from mock response."""
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(200, json=MOCK_ACCOUNT_RESPONSE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    summary = await client.get_account_summary()
    assert isinstance(summary, AccountSummary)
    assert summary.balance == pytest.approx(10000.0)
    assert summary.equity == pytest.approx(10150.5)
    assert summary.open_position_count == 1


@pytest.mark.asyncio
async def test_list_positions_and_trades(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(200, json=_route(url), request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    positions = await client.list_open_positions()
    assert positions == [OpenPosition(instrument="EUR_USD", long_units=1000.0, short_units=0.0)]
    assert positions[0].is_open

    trades = await client.list_open_trades()
    assert trades == [
        OpenTrade(trade_id="41", instrument="EUR_USD", units=1000.0, has_risk_orders=True),
        OpenTrade(trade_id="43", instrument="USD_JPY", units=-500.0, has_risk_orders=False),
    ]


@pytest.mark.asyncio
async def test_fetch_market_data(monkeypatch):
    """Candles, quote and account state collected into RawMarketData."""
    client = OandaClient(_make_config())
    requested = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        requested.append((url.rsplit("/", 1)[-1], (params or {}).get("granularity")))
        return httpx.Response(200, json=_route(url), request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    raw = await client.fetch_market_data("EUR_USD", ("H1", "M15"))
    assert raw is not None
    assert raw.pair == "EUR_USD"
    # Incomplete candle dropped
    assert len(raw.candles["M15"]) == 2
    assert len(raw.candles["H1"]) == 2
    assert raw.spread_pips == pytest.approx(1.2)
    assert raw.account.balance == 10000.0
    assert len(raw.account.open_trades) == 2
    assert raw.account.fifo_constraints is True
    assert requested[:2] == [("candles", "H1"), ("candles", "M15")]


@pytest.mark.asyncio
async def test_fetch_market_data_unavailable_without_balance(monkeypatch):
    client = OandaClient(_make_config())
    empty_account = {"account": {**MOCK_ACCOUNT_RESPONSE["account"], "balance": "0"}}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        body = empty_account if url.endswith("/summary") else _route(url)
        return httpx.Response(200, json=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.fetch_market_data("EUR_USD") is None


@pytest.mark.asyncio
async def test_fetch_market_data_unavailable_without_candles(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        body = {"candles": []} if url.endswith("/candles") else _route(url)
        return httpx.Response(200, json=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.fetch_market_data("EUR_USD") is None


@pytest.mark.asyncio
async def test_retries_transient_errors(monkeypatch):
    """A 503 is retried; the following 200 is returned."""
    client = OandaClient(_make_config())
    calls = {"n": 0}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls["n"] += 1
        status = 503 if calls["n"] == 1 else 200
        return httpx.Response(status, json=MOCK_ACCOUNT_RESPONSE, request=httpx.Request("GET", url))

    async def _no_sleep(delay):
        return None

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr("pairscan.broker.oanda_client.asyncio.sleep", _no_sleep)

    summary = await client.get_account_summary()
    assert summary.balance == pytest.approx(10000.0)
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return httpx.Response(502, json={}, request=httpx.Request("GET", url))

    async def _no_sleep(delay):
        return None

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr("pairscan.broker.oanda_client.asyncio.sleep", _no_sleep)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get_account_summary()


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch):
    client = OandaClient(_make_config())
    calls = {"n": 0}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls["n"] += 1
        return httpx.Response(401, json={}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get_account_summary()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_place_and_close(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured["post"] = (url, json)
        return httpx.Response(201, json=MOCK_ORDER_FILL_RESPONSE, request=httpx.Request("POST", url))

    async def _mock_put(self, url, *, headers=None, json=None, timeout=None):
        captured["put"] = url
        return httpx.Response(200, json={"ok": True}, request=httpx.Request("PUT", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)
    monkeypatch.setattr(httpx.AsyncClient, "put", _mock_put)

    resp = await client.place_order({"order": {"type": "MARKET"}})
    assert resp["orderFillTransaction"]["id"] == "12345"
    assert captured["post"][0].endswith("/v3/accounts/101-001-12345678-001/orders")

    await client.close_trade("41")
    assert captured["put"].endswith("/trades/41/close")

    await client.cancel_order("77")
    assert captured["put"].endswith("/orders/77/cancel")


def test_environment_switching():
    """Practice URL for practice, live URL for live."""
    assert OandaClient(_make_config("practice"))._base_url == "https://api-fxpractice.oanda.com"
    assert OandaClient(_make_config("live"))._base_url == "https://api-fxtrade.oanda.com"


# ── Executor tests ───────────────────────────────────────────────────────


def _intent(**overrides) -> TradeIntent:
    defaults = dict(decision="BUY", entry_price=1.1000, stop_loss=1.0994, take_profit=1.1010)
    defaults.update(overrides)
    return TradeIntent(**defaults)


class TestTradeExecutor:
    def test_market_buy_payload(self):
        payload = TradeExecutor(AsyncMock()).build_order("EUR_USD", _intent())
        order = payload["order"]
        assert order["type"] == "MARKET"
        assert order["units"] == "1000"
        assert order["timeInForce"] == "FOK"
        assert order["positionFill"] == "DEFAULT"
        assert order["stopLossOnFill"] == {"price": "1.0994"}
        assert order["takeProfitOnFill"] == {"price": "1.101"}
        assert "price" not in order

    def test_sell_units_negative(self):
        payload = TradeExecutor(AsyncMock(), fixed_units=2000).build_order("EUR_USD", _intent(decision="SELL"))
        assert payload["order"]["units"] == "-2000"

    def test_intent_units_override(self):
        payload = TradeExecutor(AsyncMock()).build_order("EUR_USD", _intent(units=1500))
        assert payload["order"]["units"] == "1500"

    def test_limit_order(self):
        payload = TradeExecutor(AsyncMock()).build_order("EUR_USD", _intent(entry_type="LIMIT"))
        assert payload["order"]["type"] == "LIMIT"
        assert payload["order"]["timeInForce"] == "GTC"
        assert payload["order"]["price"] == "1.1"

    def test_limit_without_price_rejected(self):
        with pytest.raises(ValueError, match="entry_price"):
            TradeExecutor(AsyncMock()).build_order("EUR_USD", _intent(entry_type="LIMIT", entry_price=None))

    def test_no_trade_rejected(self):
        with pytest.raises(ValueError, match="NO_TRADE"):
            TradeExecutor(AsyncMock()).build_order("EUR_USD", no_trade("X", "none"))

    @pytest.mark.asyncio
    async def test_execute_places_order(self):
        client = AsyncMock()
        client.place_order.return_value = MOCK_ORDER_FILL_RESPONSE
        result = await TradeExecutor(client).execute("EUR_USD", _intent())
        assert result == MOCK_ORDER_FILL_RESPONSE
        payload = client.place_order.await_args.args[0]
        assert payload["order"]["instrument"] == "EUR_USD"

    @pytest.mark.asyncio
    async def test_cancel_and_close_delegate(self):
        client = AsyncMock()
        executor = TradeExecutor(client)
        await executor.cancel("5")
        await executor.close("6")
        client.cancel_order.assert_awaited_once_with("5")
        client.close_trade.assert_awaited_once_with("6")
