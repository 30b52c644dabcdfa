"""
Position ledger with append-only JSON-lines persistence.
Fills arrive through LedgerChannel so executions never wait on disk I/O.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from scanner.models import FillRecord

logger = logging.getLogger(__name__)

LEDGER_FILE = "positions_updown.jsonl"


@dataclass
class Position:
    """Paired YES/NO holdings for one market."""
    market_id: str
    description: str
    platform: str
    yes_contracts: float = 0.0
    no_contracts: float = 0.0
    yes_cost: float = 0.0
    no_cost: float = 0.0
    fees: float = 0.0

    def apply(self, fill: FillRecord) -> None:
        if fill.side == "yes":
            self.yes_contracts += fill.contracts
            self.yes_cost += fill.contracts * fill.price
        else:
            self.no_contracts += fill.contracts
            self.no_cost += fill.contracts * fill.price
        self.fees += fill.fees

    @property
    def matched_contracts(self) -> float:
        return min(self.yes_contracts, self.no_contracts)

    @property
    def unmatched_contracts(self) -> float:
        return abs(self.yes_contracts - self.no_contracts)

    @property
    def locked_profit(self) -> float:
        """Guaranteed payout of matched sets minus what those sets cost."""
        matched = self.matched_contracts
        if matched <= 0:
            return 0.0
        avg_yes = self.yes_cost / self.yes_contracts
        avg_no = self.no_cost / self.no_contracts
        return matched * (1.0 - avg_yes - avg_no) - self.fees


def _positions_from(fills: list[FillRecord]) -> dict[str, Position]:
    positions: dict[str, Position] = {}
    for f in fills:
        pos = positions.get(f.market_id)
        if pos is None:
            pos = Position(f.market_id, f.description, f.platform)
            positions[f.market_id] = pos
        pos.apply(f)
    return positions


@dataclass
class PositionLedger:
    """Tracks fills per market and persists each one as a JSON line."""

    ledger_path: str = LEDGER_FILE
    fills: list[FillRecord] = field(default_factory=list)
    positions: dict[str, Position] = field(default_factory=dict)

    @classmethod
    def load_from(cls, path: str) -> PositionLedger:
        """Rebuild ledger state by replaying the file. Missing file = empty ledger."""
        ledger = cls(ledger_path=path)
        if not os.path.exists(path):
            return ledger
        with open(path) as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    ledger._apply(FillRecord(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning("[POSITIONS] Skipping bad ledger line %d in %s: %s", lineno, path, e)
        return ledger

    def record_fill(self, fill: FillRecord) -> None:
        """Apply a fill and append it to the ledger file."""
        self._apply(fill)
        with open(self.ledger_path, "a") as f:
            f.write(json.dumps(asdict(fill), separators=(",", ":")) + "\n")
        logger.debug(
            "[POSITIONS] %s %s %.2f @ %.3f (%s)",
            fill.market_id[:40], fill.side.upper(), fill.contracts, fill.price, fill.order_id,
        )

    def _apply(self, fill: FillRecord) -> None:
        self.fills.append(fill)
        pos = self.positions.get(fill.market_id)
        if pos is None:
            pos = Position(fill.market_id, fill.description, fill.platform)
            self.positions[fill.market_id] = pos
        pos.apply(fill)

    @property
    def all_time_pnl(self) -> float:
        return sum(p.locked_profit for p in self.positions.values())

    def daily_pnl(self, now: float | None = None) -> float:
        """Locked profit from fills recorded on the current UTC day."""
        now = time.time() if now is None else now
        today = datetime.fromtimestamp(now, timezone.utc).date()
        todays = [
            f for f in self.fills
            if datetime.fromtimestamp(f.timestamp, timezone.utc).date() == today
        ]
        return sum(p.locked_profit for p in _positions_from(todays).values())

    def summary(self) -> dict:
        open_positions = [p for p in self.positions.values() if p.yes_contracts > 0 or p.no_contracts > 0]
        return {
            "open_positions": len(open_positions),
            "total_fills": len(self.fills),
            "matched_contracts": round(sum(p.matched_contracts for p in open_positions), 2),
            "unmatched_contracts": round(sum(p.unmatched_contracts for p in open_positions), 2),
            "total_cost": round(sum(p.yes_cost + p.no_cost for p in open_positions), 2),
            "all_time_pnl": round(self.all_time_pnl, 2),
        }


class LedgerChannel:
    """Non-blocking hand-off of fills to the ledger writer task."""

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[FillRecord] = asyncio.Queue(maxsize=maxsize)

    def record_fill(self, fill: FillRecord) -> None:
        try:
            self.queue.put_nowait(fill)
        except asyncio.QueueFull:
            logger.error("[POSITIONS] Ledger queue full, dropped fill %s", fill.order_id)


async def ledger_writer_loop(channel: LedgerChannel, ledger: PositionLedger) -> None:
    """Drain the channel into the ledger forever. Write errors are logged, not fatal."""
    while True:
        fill = await channel.queue.get()
        try:
            ledger.record_fill(fill)
        except OSError as e:
            logger.error("[POSITIONS] Failed to persist fill %s: %s", fill.order_id, e)
        finally:
            channel.queue.task_done()
