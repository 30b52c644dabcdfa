"""
Market WebSocket feed. One subscription per connection covering every tracked
token; applies best-ask updates to the MarketStore and hands detected arbs to
the executor. Never gives up: the supervisor reconnects after a fixed delay.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable

import websockets
from websockets.asyncio.client import connect

from executor.engine import ArbExecutor
from scanner.market_store import MarketStore
from scanner.models import BookSnapshot, ExecutionReport, PriceLevel

logger = logging.getLogger(__name__)

PING_INTERVAL = 30.0
STALE_AFTER = 120.0
RECONNECT_DELAY = 5.0
IDLE_WAIT = 10.0

# Reasons a connection loop ended
STALE = "stale"
CLOSED = "closed"
RESUBSCRIBE = "resubscribe"


def _parse_levels(raw_levels: Any) -> tuple[PriceLevel, ...]:
    """Parse [{"price": "0.52", "size": "100"}, ...]; unparseable levels are dropped."""
    levels = []
    for lvl in raw_levels or []:
        try:
            levels.append(PriceLevel(price=float(lvl["price"]), size=float(lvl["size"])))
        except (KeyError, TypeError, ValueError):
            continue
    return tuple(levels)


def parse_book_snapshots(raw_msg: str | bytes) -> list[BookSnapshot]:
    """
    Parse a feed message into book snapshots. Messages that are not JSON, or
    entries without asset_id and asks, yield nothing.
    """
    try:
        data = json.loads(raw_msg)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("[WS] Unparseable message: %s", str(raw_msg)[:200])
        return []

    # The WS sends arrays of events; tolerate a bare object too
    events = data if isinstance(data, list) else [data]
    books = []
    for event in events:
        if not isinstance(event, dict):
            continue
        asset_id = event.get("asset_id")
        asks = event.get("asks")
        if not asset_id or not isinstance(asks, list):
            continue
        books.append(BookSnapshot(
            asset_id=str(asset_id),
            bids=_parse_levels(event.get("bids")),
            asks=_parse_levels(asks),
        ))
    return books


class MarketFeed:
    """
    Feed processor for the CLOB market channel.

    Per connection: subscribe once to the store's token set, send a ping every
    ping_interval_sec, and drop the connection when nothing (messages or pongs)
    has arrived for stale_after_sec.
    """

    def __init__(
        self,
        url: str,
        store: MarketStore,
        executor: ArbExecutor,
        ping_interval_sec: float = PING_INTERVAL,
        stale_after_sec: float = STALE_AFTER,
        reconnect_delay_sec: float = RECONNECT_DELAY,
        idle_wait_sec: float = IDLE_WAIT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._url = url
        self._store = store
        self._executor = executor
        self._ping_interval = ping_interval_sec
        self._stale_after = stale_after_sec
        self._reconnect_delay = reconnect_delay_sec
        self._idle_wait = idle_wait_sec
        self._clock = clock

        self._subscribed: set[str] = set()
        self._last_message_time: float = 0.0
        self._books_received = 0
        self._arbs_triggered = 0
        self._connections = 0

    async def run_forever(self) -> None:
        """Supervisor: reconnect after every disconnect or error, forever."""
        while True:
            try:
                reason = await self.run_once()
            except Exception as e:
                logger.error("[WS] Disconnected: %s - reconnecting in %.0fs...", e, self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                continue

            if reason == RESUBSCRIBE:
                continue
            if reason is not None:
                logger.warning("[WS] Connection ended (%s) - reconnecting in %.0fs...", reason, self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)

    async def run_once(self) -> str | None:
        """
        Run one connection. Returns why it ended, or None when there was
        nothing to subscribe to (after waiting idle_wait_sec).
        """
        tokens = self._store.tracked_tokens()
        if not tokens:
            logger.info("[WS] No markets to monitor, waiting...")
            await asyncio.sleep(self._idle_wait)
            return None

        logger.info("[WS] Connecting to %s", self._url)
        async with connect(self._url, ping_interval=None, close_timeout=5, max_size=None) as ws:
            self._connections += 1
            logger.info("[WS] Connected")
            return await self.consume(ws, tokens)

    async def consume(self, ws, tokens: set[str]) -> str:
        """Subscribe and read until the connection closes, goes stale, or needs resubscribing."""
        await ws.send(json.dumps({"assets_ids": sorted(tokens), "type": "market"}))
        self._subscribed = set(tokens)
        logger.info("[WS] Subscribed to %d tokens", len(tokens))

        self._record_message()
        next_ping = self._clock() + self._ping_interval

        while True:
            now = self._clock()
            if now - self._last_message_time >= self._stale_after:
                logger.warning("[WS] Stale connection (%.0fs silent), reconnecting...", now - self._last_message_time)
                await ws.close()
                return STALE

            if not self._store.tracked_tokens() <= self._subscribed:
                logger.info("[WS] Tracked token set changed, resubscribing")
                await ws.close()
                return RESUBSCRIBE

            if now >= next_ping:
                try:
                    pong_waiter = await ws.ping()
                except websockets.ConnectionClosed as e:
                    logger.error("[WS] Failed to send ping: %s", e)
                    return CLOSED
                pong_waiter.add_done_callback(self._on_pong)
                next_ping = now + self._ping_interval

            timeout = max(0.0, min(next_ping, self._last_message_time + self._stale_after) - now)
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
            except asyncio.TimeoutError:
                continue
            except websockets.ConnectionClosed as e:
                logger.warning("[WS] Server closed: %s", e)
                return CLOSED

            self._record_message()
            await self.handle_message(raw)

    async def handle_message(self, raw_msg: str | bytes) -> list[ExecutionReport]:
        """Apply every book snapshot in the message; returns reports for any executions."""
        reports = []
        for book in parse_book_snapshots(raw_msg):
            try:
                report = await self.process_book(book)
            except Exception as e:
                logger.warning("[WS] Error processing book for %s: %s", book.asset_id[:12], e)
                continue
            if report is not None:
                reports.append(report)
        return reports

    async def process_book(self, book: BookSnapshot) -> ExecutionReport | None:
        """Update the store with the snapshot's best ask; execute outside the lock if it triggers."""
        if book.asset_id not in self._store:
            return None
        best = book.best_ask
        if best is None:
            return None
        self._books_received += 1

        state, triggered = self._store.update_side(book.asset_id, best.price, best.size)
        if not triggered:
            return None

        self._arbs_triggered += 1
        return await self._executor.execute(state)

    def is_healthy(self, max_silence_sec: float | None = None) -> bool:
        """True if a message or pong arrived within max_silence_sec (default: stale threshold)."""
        if self._last_message_time == 0.0:
            return False
        limit = self._stale_after if max_silence_sec is None else max_silence_sec
        return self._clock() - self._last_message_time < limit

    def _record_message(self) -> None:
        self._last_message_time = self._clock()

    def _on_pong(self, waiter: asyncio.Future) -> None:
        if not waiter.cancelled() and waiter.exception() is None:
            self._record_message()

    @property
    def stats(self) -> dict:
        return {
            "connections": self._connections,
            "subscribed_tokens": len(self._subscribed),
            "books_received": self._books_received,
            "arbs_triggered": self._arbs_triggered,
        }
