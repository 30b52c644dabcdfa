"""
Paired-order arbitrage execution. Submits both legs concurrently as FAK buys,
reconciles fills, and forwards them to the position ledger.

Partial failures are reported, not unwound: a leg that filled stays filled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol

from scanner.binary import expected_profit_usd, profit_cents, trade_size
from scanner.models import (
    ExecutionReport,
    ExecutionStatus,
    Fill,
    FillRecord,
    MarketState,
    Side,
)

logger = logging.getLogger(__name__)

PLATFORM = "polymarket"


class OrderClient(Protocol):
    def buy_ioc(self, token_id: str, price: float, size: float) -> Fill: ...


class FillSink(Protocol):
    def record_fill(self, fill: FillRecord) -> None: ...


class ArbExecutor:
    """
    Sizes and executes a detected arb on a detached MarketState.
    order_client may be None only in dry-run mode.
    """

    def __init__(
        self,
        order_client: OrderClient | None,
        fill_sink: FillSink | None = None,
        min_trade_size: float = 1.0,
        max_trade_size: float = 50.0,
        unmatched_tolerance: float = 0.5,
        dry_run: bool = True,
    ):
        if order_client is None and not dry_run:
            raise ValueError("order_client is required when dry_run is False")
        self._client = order_client
        self._fill_sink = fill_sink
        self._min_size = min_trade_size
        self._max_size = max_trade_size
        self._tolerance = unmatched_tolerance
        self._dry_run = dry_run

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def execute(self, state: MarketState) -> ExecutionReport:
        profit = profit_cents(state)
        size = trade_size(state, self._min_size, self._max_size)

        logger.info("[EXEC] ARBITRAGE FOUND: %s", state.asset.upper())
        logger.info(
            "[EXEC]   %s | YES=%.3f + NO=%.3f = %.3f -> %.1fc profit",
            state.question, state.yes_price, state.no_price, state.price_sum, profit,
        )
        logger.info("[EXEC]   Size: $%.2f/leg | Profit: $%.2f", size, expected_profit_usd(state, size))

        base = dict(
            asset=state.asset,
            question=state.question,
            yes_price=state.yes_price,
            no_price=state.no_price,
            size=size,
            expected_profit_cents=profit,
        )

        if self._dry_run:
            logger.info("[EXEC]   DRY RUN - skipping execution")
            return ExecutionReport(status=ExecutionStatus.DRY_RUN, **base)

        start = time.monotonic()
        yes_result, no_result = await asyncio.gather(
            asyncio.to_thread(self._client.buy_ioc, state.yes_token, state.yes_price, size),
            asyncio.to_thread(self._client.buy_ioc, state.no_token, state.no_price, size),
            return_exceptions=True,
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        for leg, result in ((Side.YES, yes_result), (Side.NO, no_result)):
            if isinstance(result, BaseException):
                logger.error("[EXEC]   FAILED (%s leg): %s", leg.value.upper(), result)
                return ExecutionReport(
                    status=ExecutionStatus.FAILED,
                    yes_fill=yes_result if isinstance(yes_result, Fill) else None,
                    no_fill=no_result if isinstance(no_result, Fill) else None,
                    error=f"{leg.value}: {result}",
                    elapsed_ms=elapsed_ms,
                    **base,
                )

        return self._reconcile(state, yes_result, no_result, elapsed_ms, base)

    def _reconcile(
        self,
        state: MarketState,
        yes_fill: Fill,
        no_fill: Fill,
        elapsed_ms: float,
        base: dict,
    ) -> ExecutionReport:
        total_cost = yes_fill.fill_cost + no_fill.fill_cost
        realized = min(yes_fill.filled_size, no_fill.filled_size) - total_cost

        logger.info("[EXEC]   FILLED in %.0fms", elapsed_ms)
        logger.info(
            "[EXEC]     YES: %.2f @ %.3f = $%.2f",
            yes_fill.filled_size, state.yes_price, yes_fill.fill_cost,
        )
        logger.info(
            "[EXEC]     NO:  %.2f @ %.3f = $%.2f",
            no_fill.filled_size, state.no_price, no_fill.fill_cost,
        )
        logger.info("[EXEC]     Profit: $%.2f", realized)

        if self._fill_sink is not None:
            for side, fill, price in ((Side.YES, yes_fill, state.yes_price), (Side.NO, no_fill, state.no_price)):
                self._fill_sink.record_fill(FillRecord(
                    market_id=state.question,
                    description=state.question,
                    platform=PLATFORM,
                    side=side.value,
                    contracts=fill.filled_size,
                    price=price,
                    fees=fill.fee,
                    order_id=fill.order_id,
                ))

        unmatched = abs(yes_fill.filled_size - no_fill.filled_size)
        unmatched_side = None
        if unmatched > self._tolerance:
            unmatched_side = Side.YES if yes_fill.filled_size > no_fill.filled_size else Side.NO
            logger.warning(
                "[EXEC]   UNMATCHED: %.2f contracts (%s side)", unmatched, unmatched_side.value.upper(),
            )

        return ExecutionReport(
            status=ExecutionStatus.FILLED,
            yes_fill=yes_fill,
            no_fill=no_fill,
            total_cost=total_cost,
            realized_profit=realized,
            unmatched=unmatched,
            unmatched_side=unmatched_side,
            elapsed_ms=elapsed_ms,
            **base,
        )
