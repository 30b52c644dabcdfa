"""
Shared market state store. Maps outcome token ids to live MarketState records.

Written by the discovery scheduler (insert/retire) and the feed processor
(best-ask updates); read by the execution engine through detached copies.
Thread-safe via a single Lock. The lock only guards in-memory work and is
never held across network calls.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from scanner.binary import has_arb
from scanner.models import MarketState, Side, UpDownMarket

logger = logging.getLogger(__name__)


@dataclass
class MarketStore:
    """
    Token-keyed market state. Both tokens of a market map to the same record.
    update_side() evaluates the arb predicate while still holding the lock and
    returns a copy so execution can run after the lock is released.
    """
    arb_threshold: float
    _by_token: dict[str, MarketState] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def insert_if_absent(self, market: UpDownMarket) -> bool:
        """Track a market. No-op (returns False) if either token is already tracked."""
        with self._lock:
            if market.yes_token in self._by_token or market.no_token in self._by_token:
                return False
            state = MarketState.from_market(market)
            self._by_token[market.yes_token] = state
            self._by_token[market.no_token] = state
            return True

    def retire(self, predicate: Callable[[MarketState], bool]) -> int:
        """Remove every market whose state matches predicate. Returns markets removed."""
        with self._lock:
            doomed = {id(s): s for s in self._by_token.values() if predicate(s)}
            for state in doomed.values():
                self._by_token.pop(state.yes_token, None)
                self._by_token.pop(state.no_token, None)
            return len(doomed)

    def retire_markets(self, markets: Iterable[UpDownMarket]) -> int:
        """Remove the records belonging to the given (expired) markets."""
        expired: set[str] = set()
        for m in markets:
            expired.update(m.token_ids)
        return self.retire(lambda s: s.yes_token in expired or s.no_token in expired)

    def update_side(
        self, token_id: str, price: float, size: float,
    ) -> tuple[MarketState | None, bool]:
        """
        Apply a best-ask update to whichever side token_id belongs to.
        Returns (copy of state, True) when the updated market now has an arb,
        (None, False) otherwise. Unknown tokens are ignored.
        """
        with self._lock:
            state = self._by_token.get(token_id)
            if state is None:
                return None, False

            side = state.side_of(token_id)
            if side == Side.YES:
                state.yes_price = price
                state.yes_size = size
            else:
                state.no_price = price
                state.no_size = size
            state.last_update = max(state.last_update, time.monotonic())

            if has_arb(state, self.arb_threshold):
                return replace(state), True
            return None, False

    def tracked_tokens(self) -> set[str]:
        with self._lock:
            return set(self._by_token)

    def snapshot(self) -> list[MarketState]:
        """Detached copies of every tracked market (one entry per market)."""
        with self._lock:
            unique = {id(s): s for s in self._by_token.values()}
            return [replace(s) for s in unique.values()]

    def __contains__(self, token_id: object) -> bool:
        with self._lock:
            return token_id in self._by_token

    def __len__(self) -> int:
        """Number of tracked markets (not tokens)."""
        with self._lock:
            return len(self._by_token) // 2
