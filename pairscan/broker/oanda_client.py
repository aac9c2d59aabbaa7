"""OANDA v20 REST API async client.

Handles all communication with OANDA: candle and pricing fetches, account
queries, and order placement / cancellation / trade closing.  Also acts as
the scan engine's market data provider via ``fetch_market_data``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

import httpx

from pairscan.broker.models import (
    AccountSnapshot,
    AccountSummary,
    Candle,
    OpenPosition,
    OpenTrade,
    PriceSnapshot,
    RawMarketData,
)
from pairscan.config import Config
from pairscan.strategy.models import pip_size

logger = logging.getLogger("pairscan.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_RISK_ORDER_KEYS = (
    "takeProfitOrder",
    "stopLossOrder",
    "trailingStopLossOrder",
    "takeProfitOrderID",
    "stopLossOrderID",
    "trailingStopLossOrderID",
)


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.oanda_base_url
        self._account_id = config.oanda_account_id
        self._candle_counts = config.candle_counts
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "OANDA %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "OANDA %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    # ── Market data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        instrument: str,
        granularity: str,
        count: int = 100,
    ) -> list[Candle]:
        """Fetch candlestick data from OANDA.

        Args:
            instrument: e.g. ``"EUR_USD"``
            granularity: e.g. ``"M15"``, ``"H1"``
            count: number of candles to request (max 5000)

        Returns:
            List of ``Candle`` objects ordered oldest-first, including the
            in-progress candle (``complete=False``).
        """
        url = f"{self._base_url}/v3/instruments/{instrument}/candles"
        params = {
            "granularity": granularity,
            "count": count,
            "price": "M",  # mid prices
        }

        resp = await self._request_with_retry("get", url, params=params)

        candles: list[Candle] = []
        for c in resp.json().get("candles", []):
            mid = c.get("mid", {})
            candles.append(
                Candle(
                    time=c["time"],
                    open=_to_float(mid.get("o")),
                    high=_to_float(mid.get("h")),
                    low=_to_float(mid.get("l")),
                    close=_to_float(mid.get("c")),
                    volume=int(c.get("volume", 0)),
                    complete=bool(c.get("complete")),
                )
            )
        return candles

    async def get_pricing(self, instrument: str) -> PriceSnapshot:
        """Current closeout bid/ask, falling back to the best book price."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/pricing"

        resp = await self._request_with_retry(
            "get", url, params={"instruments": instrument},
        )

        prices = resp.json().get("prices", [])
        quote = prices[0] if prices else {}
        bids = quote.get("bids") or [{}]
        asks = quote.get("asks") or [{}]
        bid = _to_float(quote.get("closeoutBid") or bids[0].get("price"))
        ask = _to_float(quote.get("closeoutAsk") or asks[0].get("price"))
        return PriceSnapshot.from_quote(bid, ask)

    # ── Account ──────────────────────────────────────────────────────────

    async def get_account_summary(self) -> AccountSummary:
        """Query OANDA for account balance, equity, and open position count."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/summary"

        resp = await self._request_with_retry("get", url)

        acct = resp.json()["account"]
        return AccountSummary(
            account_id=acct["id"],
            balance=float(acct["balance"]),
            equity=float(acct["NAV"]),
            open_position_count=int(acct["openPositionCount"]),
            currency=acct["currency"],
        )

    async def list_open_positions(self) -> list[OpenPosition]:
        """Return all open positions on the account."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/openPositions"

        resp = await self._request_with_retry("get", url)

        return [
            OpenPosition(
                instrument=p["instrument"],
                long_units=_to_float(p.get("long", {}).get("units", "0")),
                short_units=_to_float(p.get("short", {}).get("units", "0")),
            )
            for p in resp.json().get("positions", [])
        ]

    async def list_open_trades(self) -> list[OpenTrade]:
        """Return all open trades with the metadata the FIFO checks need."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/openTrades"

        resp = await self._request_with_retry("get", url)

        return [
            OpenTrade(
                trade_id=str(t.get("id", "")),
                instrument=str(t.get("instrument", "")),
                units=_to_float(t.get("currentUnits", "0")),
                has_risk_orders=any(t.get(key) for key in _RISK_ORDER_KEYS),
            )
            for t in resp.json().get("trades", [])
        ]

    async def fetch_market_data(
        self,
        pair: str,
        timeframes: Sequence[str] = ("H1", "M15"),
    ) -> Optional[RawMarketData]:
        """Collect candles, pricing and account state for one pair.

        Only complete candles with a positive close are kept.  Returns
        ``None`` when M15 or H1 history is empty, the quote has no mid, or
        the account balance is not positive.
        """
        candles: dict[str, list[Candle]] = {}
        for tf in timeframes:
            raw = await self.fetch_candles(pair, tf, self._candle_counts.get(tf, 100))
            candles[tf] = [c for c in raw if c.complete and c.close > 0]

        price = await self.get_pricing(pair)
        summary = await self.get_account_summary()
        positions = await self.list_open_positions()
        trades = await self.list_open_trades()

        if (
            not candles.get("M15")
            or not candles.get("H1")
            or price.mid <= 0
            or summary.balance <= 0
        ):
            logger.info("Market data unavailable for %s", pair)
            return None

        spread_pips = (price.ask - price.bid) / pip_size(pair)
        return RawMarketData(
            pair=pair,
            now=datetime.now(timezone.utc).isoformat(),
            price=price,
            spread_pips=round(spread_pips, 2),
            candles=candles,
            account=AccountSnapshot(
                balance=round(summary.balance, 2),
                open_positions=tuple(positions),
                open_trades=tuple(trades),
                fifo_constraints=True,
            ),
        )

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(self, payload: dict) -> dict:
        """Submit an order payload (``{"order": {...}}``).

        Returns the raw OANDA response dict.
        """
        url = f"{self._base_url}/v3/accounts/{self._account_id}/orders"

        resp = await self._request_with_retry("post", url, json=payload)

        return resp.json()

    async def cancel_order(self, order_id: str) -> dict:
        """Cancel a pending order.  Returns the raw OANDA response dict."""
        url = (
            f"{self._base_url}/v3/accounts/{self._account_id}"
            f"/orders/{order_id}/cancel"
        )

        resp = await self._request_with_retry("put", url, json={})

        return resp.json()

    async def close_trade(self, trade_id: str) -> dict:
        """Close an open trade in full.  Returns the raw OANDA response dict."""
        url = (
            f"{self._base_url}/v3/accounts/{self._account_id}"
            f"/trades/{trade_id}/close"
        )

        resp = await self._request_with_retry("put", url, json={})

        return resp.json()
