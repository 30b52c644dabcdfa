"""
Binary Up/Down arbitrage predicate and sizing.
Detects when YES_ask + NO_ask < threshold (< 1.0): buying one of each
guarantees $1.00 at resolution.
"""

from __future__ import annotations

from scanner.models import MarketState


def has_arb(state: MarketState, threshold: float) -> bool:
    """True iff both sides have a positive ask and their sum is below threshold."""
    if state.yes_price <= 0.0 or state.no_price <= 0.0:
        return False
    return state.yes_price + state.no_price < threshold


def profit_cents(state: MarketState) -> float:
    """Expected profit per set in cents: (1.00 - (YES + NO)) * 100."""
    if state.yes_price <= 0.0 or state.no_price <= 0.0:
        return 0.0
    return (1.0 - (state.yes_price + state.no_price)) * 100.0


def trade_size(state: MarketState, min_size: float, max_size: float) -> float:
    """
    Size per leg: the smaller resting size of the two sides, clamped to
    [min_size, max_size]. Thin books still trade at min_size.
    """
    available = min(state.yes_size, state.no_size)
    return max(min(available, max_size), min_size)


def expected_profit_usd(state: MarketState, size: float) -> float:
    return size * profit_cents(state) / 100.0
