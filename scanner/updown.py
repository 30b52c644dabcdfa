"""
Up/Down market discovery and window-aligned preload scheduling.

Markets are identified by slug "{asset}-updown-{N}m-{interval_end}", where
interval_end is the Unix close time of the window. Scheduling follows window
boundaries instead of a fixed poll period:

    DISCOVER  current window -> insert into store
    PRELOAD   at close - preload_buffer: discover next window -> insert
    RETIRE    at close + grace: remove the expired window's markets
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from client.gamma import CatalogError, GammaCatalog
from scanner.market_store import MarketStore
from scanner.models import UpDownMarket

logger = logging.getLogger(__name__)

UPDOWN_ASSETS = ("btc", "eth", "sol", "xrp")
MARKET_INTERVAL_SECS = 900


def interval_end(now: float, window_sec: int = MARKET_INTERVAL_SECS, offset: int = 0) -> int:
    """
    Close time of the window containing now, shifted by offset windows.
    Example: now=18:47 with 15m windows -> 19:00 (offset=0), 19:15 (offset=1).
    """
    return (int(now) // window_sec + 1 + offset) * window_sec


def market_slug(asset: str, end_ts: int, window_sec: int = MARKET_INTERVAL_SECS) -> str:
    return f"{asset.lower()}-updown-{window_sec // 60}m-{end_ts}"


class UpDownScanner:
    """Derives candidate slugs per window and queries the catalog for them concurrently."""

    def __init__(
        self,
        catalog: GammaCatalog,
        assets: tuple[str, ...] | list[str] = UPDOWN_ASSETS,
        window_sec: int = MARKET_INTERVAL_SECS,
        lookahead_intervals: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self._catalog = catalog
        self._assets = tuple(a.lower() for a in assets)
        self._window_sec = window_sec
        self._lookahead = max(1, lookahead_intervals)
        self._clock = clock

    @property
    def window_sec(self) -> int:
        return self._window_sec

    async def scan_window(self, end_ts: int) -> list[UpDownMarket]:
        """Query every asset's market closing at end_ts. Drops untradeable and failed lookups."""
        slugs = [(asset, market_slug(asset, end_ts, self._window_sec)) for asset in self._assets]
        results = await asyncio.gather(
            *(self._query(asset, slug, end_ts) for asset, slug in slugs)
        )
        return [m for m in results if m is not None]

    async def scan_markets_for_interval(self, offset: int = 0) -> list[UpDownMarket]:
        """Scan the window `offset` intervals after the current one."""
        end_ts = interval_end(self._clock(), self._window_sec, offset)
        logger.info("[UPDOWN] Scanning %d candidate slugs for window ending %d", len(self._assets), end_ts)
        return await self.scan_window(end_ts)

    async def scan_active_markets(self) -> list[UpDownMarket]:
        """Scan the current window and any configured lookahead windows."""
        now = self._clock()
        markets: list[UpDownMarket] = []
        for offset in range(self._lookahead):
            markets.extend(await self.scan_window(interval_end(now, self._window_sec, offset)))

        logger.info("[UPDOWN] Found %d active markets", len(markets))
        for m in markets:
            logger.info(
                "  %s | %s | ends in %ds",
                m.asset.upper(), m.question, max(0, m.end_timestamp - int(now)),
            )
        return markets

    async def run_continuous(
        self,
        out: asyncio.Queue[list[UpDownMarket]],
        scan_interval_sec: float = 30.0,
    ) -> None:
        """Publish a market-list snapshot every scan_interval_sec. Scan failures are logged, never fatal."""
        logger.info("[UPDOWN] Starting continuous market scanner (every %.0fs)", scan_interval_sec)
        while True:
            try:
                markets = await self.scan_active_markets()
            except Exception as e:
                logger.warning("[UPDOWN] Scan failed: %s", e)
            else:
                await out.put(markets)
            await asyncio.sleep(scan_interval_sec)

    async def _query(self, asset: str, slug: str, end_ts: int) -> UpDownMarket | None:
        try:
            market = await self._catalog.lookup(slug)
        except CatalogError as e:
            logger.warning("[UPDOWN] Failed to query %s: %s", slug, e)
            return None

        if market is None:
            logger.debug("[UPDOWN] Market %s not found (may not exist yet)", slug)
            return None
        if not market.is_tradeable:
            logger.debug(
                "[UPDOWN] Market %s not tradeable (active=%s closed=%s accepting=%s)",
                slug, market.active, market.closed, market.accepting_orders,
            )
            return None
        pair = market.token_pair
        if pair is None:
            logger.warning(
                "[UPDOWN] Market %s has %d token ids, expected 2; skipping",
                slug, len(market.clob_token_ids),
            )
            return None

        yes_token, no_token = pair
        return UpDownMarket(
            slug=slug,
            asset=asset,
            question=market.question,
            yes_token=yes_token,
            no_token=no_token,
            end_timestamp=end_ts,
        )


class Phase(Enum):
    DISCOVER = "discover"
    PRELOAD = "preload"
    RETIRE = "retire"


@dataclass(frozen=True)
class ScheduleState:
    """Next scheduler action and the wall-clock time it is due."""
    phase: Phase
    deadline: float
    interval_end: int = 0
    current: tuple[UpDownMarket, ...] = ()


class DiscoveryScheduler:
    """
    Keeps the store populated with the current window's markets and preloads the
    next window before the current one closes. Each step recomputes the next
    deadline from the clock, so sleep overruns never accumulate.
    """

    def __init__(
        self,
        scanner: UpDownScanner,
        store: MarketStore,
        preload_buffer_sec: float = 60.0,
        expiry_grace_sec: float = 5.0,
        retry_delay_sec: float = 10.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._scanner = scanner
        self._store = store
        self._preload_buffer = preload_buffer_sec
        self._expiry_grace = expiry_grace_sec
        self._retry_delay = retry_delay_sec
        self._clock = clock
        self._sleep = sleep

    async def run(self) -> None:
        state = ScheduleState(Phase.DISCOVER, deadline=self._clock())
        while True:
            await self._sleep_until(state.deadline)
            state = await self.step(state)

    async def step(self, state: ScheduleState) -> ScheduleState:
        if state.phase == Phase.DISCOVER:
            return await self._discover()
        if state.phase == Phase.PRELOAD:
            return await self._preload(state)
        return self._retire(state)

    async def _discover(self) -> ScheduleState:
        now = self._clock()
        try:
            markets = await self._scanner.scan_markets_for_interval(0)
        except Exception as e:
            logger.warning("[SCANNER] Discovery failed: %s, retrying in %.0fs", e, self._retry_delay)
            return ScheduleState(Phase.DISCOVER, deadline=now + self._retry_delay)

        if not markets:
            logger.warning("[SCANNER] No active markets found, retrying in %.0fs...", self._retry_delay)
            return ScheduleState(Phase.DISCOVER, deadline=now + self._retry_delay)

        end_ts = markets[0].end_timestamp
        for m in markets:
            if self._store.insert_if_absent(m):
                logger.info("[SCANNER] Current: %s (ends in %ds)", m.asset.upper(), max(0, end_ts - int(now)))

        preload_at = end_ts - self._preload_buffer
        logger.info(
            "[SCANNER] %d active markets | preload in %ds | cleanup at expiry+%.0fs",
            len(markets), max(0, int(preload_at - now)), self._expiry_grace,
        )
        return ScheduleState(Phase.PRELOAD, deadline=preload_at, interval_end=end_ts, current=tuple(markets))

    async def _preload(self, state: ScheduleState) -> ScheduleState:
        next_end = state.interval_end + self._scanner.window_sec
        logger.info("[SCANNER] Preloading next interval (%.0fs early)...", self._preload_buffer)
        try:
            next_markets = await self._scanner.scan_window(next_end)
        except Exception as e:
            logger.warning("[SCANNER] Failed to preload next markets: %s", e)
            next_markets = []

        for m in next_markets:
            if self._store.insert_if_absent(m):
                logger.info(
                    "[SCANNER] Next: %s (starts in %ds)",
                    m.asset.upper(), max(0, state.interval_end - int(self._clock())),
                )
        logger.info("[SCANNER] Preloaded %d next markets | total active: %d", len(next_markets), len(self._store))

        return ScheduleState(
            Phase.RETIRE,
            deadline=state.interval_end + self._expiry_grace,
            interval_end=state.interval_end,
            current=state.current,
        )

    def _retire(self, state: ScheduleState) -> ScheduleState:
        removed = self._store.retire_markets(state.current)
        # Preloaded markets the last discovery round missed are not in `current`
        removed += self._store.retire(lambda s: s.end_timestamp <= state.interval_end)
        if removed:
            logger.info("[SCANNER] Cleaned up %d expired markets | %d remain", removed, len(self._store))
        return ScheduleState(Phase.DISCOVER, deadline=self._clock())

    async def _sleep_until(self, deadline: float) -> None:
        remaining = deadline - self._clock()
        if remaining > 0:
            await self._sleep(remaining)
