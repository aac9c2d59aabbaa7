"""Trade executor — turns a selected trade intent into an OANDA order."""

import logging
import math

from pairscan.broker.oanda_client import OandaClient
from pairscan.strategy.models import TradeIntent

logger = logging.getLogger("pairscan.broker")


class TradeExecutor:
    """Submits, cancels and closes orders through an ``OandaClient``.

    Args:
        client: Broker client.
        fixed_units: Order size used when an intent carries no units override.
    """

    def __init__(self, client: OandaClient, fixed_units: int = 1000) -> None:
        self._client = client
        self._fixed_units = fixed_units

    def build_order(self, pair: str, intent: TradeIntent) -> dict:
        """Build the OANDA order payload for *intent*.

        Units are signed by side: positive for BUY, negative for SELL.

        Raises:
            ValueError: For a NO_TRADE intent or a LIMIT intent with no
                entry price.
        """
        if intent.decision == "NO_TRADE":
            raise ValueError("Cannot execute NO_TRADE intent")

        base_units = intent.units if intent.units and intent.units > 0 else self._fixed_units
        signed_units = base_units if intent.decision == "BUY" else -base_units
        order_type = "LIMIT" if intent.entry_type == "LIMIT" else "MARKET"

        order: dict = {
            "type": order_type,
            "instrument": pair,
            "units": str(int(signed_units)),
            "timeInForce": "FOK" if order_type == "MARKET" else "GTC",
            "positionFill": "DEFAULT",
        }

        if order_type == "LIMIT":
            if intent.entry_price is None or not math.isfinite(intent.entry_price):
                raise ValueError("LIMIT intent requires entry_price")
            order["price"] = str(intent.entry_price)

        if intent.stop_loss and math.isfinite(intent.stop_loss):
            order["stopLossOnFill"] = {"price": str(intent.stop_loss)}
        if intent.take_profit and math.isfinite(intent.take_profit):
            order["takeProfitOnFill"] = {"price": str(intent.take_profit)}

        return {"order": order}

    async def execute(self, pair: str, intent: TradeIntent) -> dict:
        """Place the order for *intent* and return the raw broker response."""
        payload = self.build_order(pair, intent)
        logger.info(
            "Placing %s %s order: %s units SL=%s TP=%s",
            payload["order"]["type"], pair, payload["order"]["units"],
            intent.stop_loss, intent.take_profit,
        )
        return await self._client.place_order(payload)

    async def cancel(self, order_id: str) -> dict:
        return await self._client.cancel_order(order_id)

    async def close(self, trade_id: str) -> dict:
        return await self._client.close_trade(trade_id)
