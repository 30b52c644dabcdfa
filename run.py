#!/usr/bin/env python3
"""
Up/Down Arbitrage Bot.

Strategy: buy YES + NO when the two asks sum below $1.00
(e.g. 28c + 66c = 94c -> 6c per set), on the BTC/ETH/SOL/XRP
15-minute Up/Down markets.

Tasks (single process, one event loop):
  1. Discovery scheduler  -- keeps the current + preloaded windows in the store
  2. Feed supervisor      -- market WebSocket -> store updates -> execution
  3. Ledger writer        -- persists fills to the position ledger
  4. Status logger        -- periodic feed health and counters

Usage:
  python run.py                # dry run (default): detect and size, never trade
  python run.py --live         # live execution (needs PRIVATE_KEY + POLYMARKET_PROFILE_ADDRESS)
  python run.py --scan         # one-shot discovery of the current window
  python run.py --watch        # continuous discovery, no feed, no trading
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from pydantic import ValidationError

from client.auth import build_clob_client
from client.clob import ClobOrderClient
from client.gamma import GammaCatalog
from client.ws import MarketFeed
from config import Config, load_config
from executor.engine import ArbExecutor
from monitor.logger import setup_logging
from monitor.pnl import LedgerChannel, PositionLedger, ledger_writer_loop
from scanner.market_store import MarketStore
from scanner.models import UpDownMarket
from scanner.updown import DiscoveryScheduler, UpDownScanner

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Polymarket Up/Down Arbitrage Bot")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--live", action="store_true", help="Submit real orders (overrides DRY_RUN)")
    mode.add_argument("--dry-run", action="store_true", help="Detect and size only, never submit orders")
    parser.add_argument("--scan", action="store_true", help="Scan the current window once and exit")
    parser.add_argument("--watch", action="store_true", help="Run the continuous market scanner only")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    return parser.parse_args(argv)


def apply_cli_overrides(cfg: Config, args: argparse.Namespace) -> Config:
    if args.live:
        return cfg.model_copy(update={"dry_run": False})
    if args.dry_run:
        return cfg.model_copy(update={"dry_run": True})
    return cfg


def build_scanner(cfg: Config, catalog: GammaCatalog) -> UpDownScanner:
    return UpDownScanner(
        catalog,
        assets=cfg.updown_assets,
        window_sec=cfg.window_sec,
        lookahead_intervals=cfg.lookahead_intervals,
    )


def print_startup(cfg: Config) -> None:
    logger.info("Up/Down Arbitrage Bot")
    logger.info(
        "   Threshold: <%.1fc (%.1f%% profit)",
        cfg.arb_threshold * 100, (1.0 - cfg.arb_threshold) * 100,
    )
    logger.info("   Size: $%.0f-$%.0f per leg", cfg.min_trade_size, cfg.max_trade_size)
    logger.info("   Assets: %s | window %ds", ", ".join(a.upper() for a in cfg.updown_assets), cfg.window_sec)
    if cfg.dry_run:
        logger.info("   Mode: DRY RUN (use --live or DRY_RUN=false to execute)")
    else:
        logger.warning("   Mode: LIVE EXECUTION")


def print_markets(markets: list[UpDownMarket]) -> None:
    logger.info("Found %d active Up/Down markets:", len(markets))
    for m in markets:
        logger.info("")
        logger.info("  Market: %s", m.question)
        logger.info("  Slug:   %s", m.slug)
        logger.info("  Asset:  %s", m.asset.upper())
        logger.info("  YES (Up) token:   %s", m.yes_token)
        logger.info("  NO (Down) token:  %s", m.no_token)
        logger.info("  Ends at: %d (Unix timestamp)", m.end_timestamp)
    if not markets:
        logger.info("")
        logger.info("No active Up/Down markets found. Possible causes:")
        logger.info("  - no markets are currently active")
        logger.info("  - the slug format has changed")
        logger.info("  - markets aren't listed yet (check closer to the interval boundary)")


def print_positions(ledger: PositionLedger) -> None:
    summary = ledger.summary()
    logger.info("[POSITIONS] Loaded from %s", ledger.ledger_path)
    logger.info("   Open positions: %d", summary["open_positions"])
    logger.info("   Daily P&L: $%.2f", ledger.daily_pnl())
    logger.info("   All-time P&L: $%.2f", ledger.all_time_pnl)


def log_status(store: MarketStore, feed: MarketFeed) -> bool:
    """Log one status line. Returns the feed health."""
    healthy = feed.is_healthy()
    stats = feed.stats
    logger.info(
        "[STATUS] Markets: %d | feed %s | books %d | arbs %d | connections %d",
        len(store), "ok" if healthy else "stale", stats["books_received"],
        stats["arbs_triggered"], stats["connections"],
    )
    if len(store) and not healthy:
        logger.warning("[STATUS] No market data for tracked tokens")
    return healthy


async def status_loop(store: MarketStore, feed: MarketFeed, interval_sec: float) -> None:
    while True:
        await asyncio.sleep(interval_sec)
        log_status(store, feed)


async def scan_once(cfg: Config) -> list[UpDownMarket]:
    catalog = GammaCatalog(cfg.gamma_host, timeout=cfg.catalog_timeout_sec)
    try:
        markets = await build_scanner(cfg, catalog).scan_active_markets()
    finally:
        await catalog.aclose()
    print_markets(markets)
    return markets


async def watch(cfg: Config) -> None:
    """Continuous scanner: log every market-list snapshot it publishes."""
    catalog = GammaCatalog(cfg.gamma_host, timeout=cfg.catalog_timeout_sec)
    snapshots: asyncio.Queue[list[UpDownMarket]] = asyncio.Queue(maxsize=1)
    producer = asyncio.create_task(build_scanner(cfg, catalog).run_continuous(snapshots, cfg.scan_interval_sec))
    try:
        while True:
            markets = await snapshots.get()
            logger.info("[WATCH] %d markets: %s", len(markets), ", ".join(m.slug for m in markets) or "-")
    finally:
        producer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await producer
        await catalog.aclose()


async def run_bot(cfg: Config, order_client: ClobOrderClient | None, ledger: PositionLedger) -> None:
    catalog = GammaCatalog(cfg.gamma_host, timeout=cfg.catalog_timeout_sec)
    store = MarketStore(arb_threshold=cfg.arb_threshold)
    channel = LedgerChannel()
    executor = ArbExecutor(
        order_client,
        fill_sink=channel,
        min_trade_size=cfg.min_trade_size,
        max_trade_size=cfg.max_trade_size,
        unmatched_tolerance=cfg.unmatched_tolerance,
        dry_run=cfg.dry_run,
    )
    scheduler = DiscoveryScheduler(
        build_scanner(cfg, catalog),
        store,
        preload_buffer_sec=cfg.preload_buffer_sec,
        expiry_grace_sec=cfg.expiry_grace_sec,
        retry_delay_sec=cfg.discovery_retry_sec,
    )
    feed = MarketFeed(
        cfg.ws_market_url,
        store,
        executor,
        ping_interval_sec=cfg.ws_ping_interval_sec,
        stale_after_sec=cfg.ws_stale_after_sec,
        reconnect_delay_sec=cfg.ws_reconnect_delay_sec,
        idle_wait_sec=cfg.ws_idle_wait_sec,
    )

    tasks = [
        asyncio.create_task(scheduler.run(), name="scheduler"),
        asyncio.create_task(feed.run_forever(), name="feed"),
        asyncio.create_task(ledger_writer_loop(channel, ledger), name="ledger"),
        asyncio.create_task(status_loop(store, feed, cfg.status_interval_sec), name="status"),
    ]

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda s=sig: _request_shutdown(s, tasks))

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Shutdown requested, stopping tasks...")
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        # Persist anything still queued
        while not channel.queue.empty():
            ledger.record_fill(channel.queue.get_nowait())
        await catalog.aclose()
        logger.info("Feed stats: %s", feed.stats)
        print_positions(ledger)


def _request_shutdown(signum: int, tasks: list[asyncio.Task]) -> None:
    logger.info("Received signal %d", signum)
    for t in tasks:
        t.cancel()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        cfg = apply_cli_overrides(load_config(), args)
    except ValidationError as e:
        setup_logging("INFO", log_dir=None)
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    log_path = setup_logging(cfg.log_level, log_dir=cfg.log_dir, json_log_file=args.json_log)
    logger.debug("Log file: %s", log_path)

    if args.scan:
        asyncio.run(scan_once(cfg))
        return
    if args.watch:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(watch(cfg))
        return

    print_startup(cfg)

    order_client = None
    if not cfg.dry_run:
        if not cfg.has_credentials:
            logger.error("PRIVATE_KEY and POLYMARKET_PROFILE_ADDRESS required for live trading.")
            logger.error("Run without --live for a dry run.")
            sys.exit(1)
        logger.info("[POLYMARKET] Creating client and deriving API credentials...")
        try:
            order_client = ClobOrderClient(build_clob_client(cfg), tick_size=cfg.tick_size)
        except Exception as e:
            logger.error("[POLYMARKET] Client setup failed: %s", e)
            sys.exit(1)
        logger.info("[POLYMARKET] Client ready")

    ledger = PositionLedger.load_from(cfg.positions_file)
    print_positions(ledger)

    asyncio.run(run_bot(cfg, order_client, ledger))


if __name__ == "__main__":
    main()
