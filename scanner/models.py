"""
Data models for the Up/Down arbitrage bot. Pure data, minimal behavior.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class Side(Enum):
    YES = "yes"
    NO = "no"


class ExecutionStatus(Enum):
    DRY_RUN = "dry_run"
    FILLED = "filled"
    FAILED = "failed"


@dataclass(frozen=True)
class PriceLevel:
    price: float
    size: float


@dataclass(frozen=True)
class BookSnapshot:
    """One order-book snapshot from the market WebSocket."""
    asset_id: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]

    @property
    def best_ask(self) -> PriceLevel | None:
        """Lowest positive ask price with positive size, or None."""
        best: PriceLevel | None = None
        for lvl in self.asks:
            if lvl.price <= 0 or lvl.size <= 0:
                continue
            if best is None or lvl.price < best.price:
                best = lvl
        return best


@dataclass(frozen=True)
class UpDownMarket:
    """A tradeable Up/Down market for one window. Immutable once discovered."""
    slug: str
    asset: str
    question: str
    yes_token: str  # "Up"
    no_token: str   # "Down"
    end_timestamp: int  # Unix seconds when the window closes

    @property
    def token_ids(self) -> tuple[str, str]:
        return (self.yes_token, self.no_token)


@dataclass
class MarketState:
    """Live best-ask state for one market. Owned and mutated by MarketStore."""
    asset: str
    question: str
    slug: str
    yes_token: str
    no_token: str
    end_timestamp: int
    yes_price: float = 0.0
    no_price: float = 0.0
    yes_size: float = 0.0
    no_size: float = 0.0
    last_update: float = field(default_factory=time.monotonic)

    @classmethod
    def from_market(cls, market: UpDownMarket) -> MarketState:
        return cls(
            asset=market.asset,
            question=market.question,
            slug=market.slug,
            yes_token=market.yes_token,
            no_token=market.no_token,
            end_timestamp=market.end_timestamp,
        )

    def side_of(self, token_id: str) -> Side | None:
        if token_id == self.yes_token:
            return Side.YES
        if token_id == self.no_token:
            return Side.NO
        return None

    @property
    def price_sum(self) -> float:
        return self.yes_price + self.no_price


@dataclass(frozen=True)
class Fill:
    """Result of one immediate-or-cancel leg."""
    filled_size: float
    fill_cost: float
    order_id: str
    fee: float = 0.0  # venue-reported, USDC


@dataclass(frozen=True)
class FillRecord:
    """A leg fill forwarded to the position ledger."""
    market_id: str
    description: str
    platform: str
    side: str  # "yes" | "no"
    contracts: float
    price: float
    fees: float
    order_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ExecutionReport:
    """Outcome of one paired execution attempt."""
    status: ExecutionStatus
    asset: str
    question: str
    yes_price: float
    no_price: float
    size: float
    expected_profit_cents: float
    yes_fill: Fill | None = None
    no_fill: Fill | None = None
    total_cost: float = 0.0
    realized_profit: float = 0.0
    unmatched: float = 0.0
    unmatched_side: Side | None = None
    error: str = ""
    elapsed_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def has_unmatched_exposure(self) -> bool:
        return self.unmatched_side is not None
