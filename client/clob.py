"""
CLOB order client wrapper. Thin layer converting SDK responses to our Fill model.
"""

from __future__ import annotations

import logging

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, OrderType, PartialCreateOrderOptions
from py_clob_client.order_builder.constants import BUY

from scanner.models import Fill

logger = logging.getLogger(__name__)

# Keys seen for matched size / spent notional on order responses
_FILLED_SIZE_KEYS = ("takingAmount", "filled_size", "filledSize", "size_matched", "matchedSize")
_FILL_COST_KEYS = ("makingAmount", "fill_cost", "fillCost")
_FEE_KEYS = ("fee", "fees", "feeAmount", "fee_amount")


class OrderRejected(Exception):
    """Raised when the venue rejects an order or the submission fails."""
    pass


def quantize_price(price: float, tick_size: float) -> float:
    """Round price to the nearest tick, clamped to one tick inside (0, 1)."""
    if tick_size <= 0:
        raise ValueError(f"tick_size must be positive, got {tick_size}")
    ticks = round(price / tick_size)
    quantized = round(ticks * tick_size, 6)
    return min(max(quantized, tick_size), 1.0 - tick_size)


def _first_float(resp: dict, keys: tuple[str, ...]) -> float | None:
    for key in keys:
        if key not in resp:
            continue
        try:
            return float(resp[key])
        except (TypeError, ValueError):
            continue
    return None


def parse_fill(resp: dict, price: float, requested_size: float) -> Fill:
    """
    Extract a Fill from a post_order response.
    BUY orders report shares received as takingAmount and USDC spent as makingAmount.
    Raises OrderRejected for unsuccessful responses.
    """
    if not isinstance(resp, dict):
        raise OrderRejected(f"unexpected order response: {resp!r}")
    error_msg = str(resp.get("errorMsg") or resp.get("error") or "")
    if resp.get("success") is False or error_msg:
        raise OrderRejected(error_msg or f"order rejected: {resp}")

    order_id = str(resp.get("orderID") or resp.get("order_id") or "")
    status = str(resp.get("status", "")).lower()

    filled = _first_float(resp, _FILLED_SIZE_KEYS)
    if filled is None:
        # No size fields: infer from status
        filled = requested_size if status in ("matched", "filled") else 0.0
    filled = max(0.0, min(filled, requested_size))

    cost = _first_float(resp, _FILL_COST_KEYS)
    if cost is None or filled == 0.0:
        cost = filled * price

    fee = _first_float(resp, _FEE_KEYS) if filled > 0 else None

    return Fill(filled_size=filled, fill_cost=cost, order_id=order_id, fee=max(0.0, fee or 0.0))


class ClobOrderClient:
    """
    Places immediate-or-cancel (FAK) buys through an authenticated ClobClient.
    Synchronous; callers run it in a worker thread. The SDK client is shared
    across legs without extra locking.
    """

    def __init__(self, client: ClobClient, tick_size: str = "0.01"):
        self._client = client
        self._tick_size = tick_size

    def buy_ioc(self, token_id: str, price: float, size: float) -> Fill:
        """Buy up to size contracts at limit price; the unfilled remainder is cancelled."""
        limit = quantize_price(price, float(self._tick_size))
        args = OrderArgs(
            token_id=token_id,
            price=limit,
            size=round(size, 2),
            side=BUY,
        )
        options = PartialCreateOrderOptions(tick_size=self._tick_size, neg_risk=False)
        try:
            signed = self._client.create_order(args, options)
            resp = self._client.post_order(signed, OrderType.FAK)
        except Exception as e:
            raise OrderRejected(f"{token_id[:12]}...: {e}") from e

        fill = parse_fill(resp, limit, round(size, 2))
        logger.debug(
            "FAK buy %s... @ %.3f x %.2f -> filled %.2f cost $%.2f id=%s",
            token_id[:12], limit, size, fill.filled_size, fill.fill_cost, fill.order_id,
        )
        return fill
