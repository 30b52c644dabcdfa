"""
Unit tests for client/ws.py -- book parsing, store updates, and the
connection loop (stale detection, pings, resubscribe) against a fake socket.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.exceptions import ConnectionClosedOK

from client.ws import CLOSED, RESUBSCRIBE, STALE, MarketFeed, parse_book_snapshots
from executor.engine import ArbExecutor
from scanner.market_store import MarketStore
from scanner.models import ExecutionStatus, UpDownMarket


def _market(yes="y1", no="n1", asset="btc"):
    return UpDownMarket(
        slug=f"{asset}-updown-15m-1766100600",
        asset=asset,
        question=f"{asset.upper()} Up or Down?",
        yes_token=yes,
        no_token=no,
        end_timestamp=1766100600,
    )


def _tracked(store, token):
    return next(s for s in store.snapshot() if token in (s.yes_token, s.no_token))


def _book_msg(asset_id, asks, bids=()):
    return json.dumps([{
        "event_type": "book",
        "asset_id": asset_id,
        "market": "0xcond",
        "bids": [{"price": str(p), "size": str(s)} for p, s in bids],
        "asks": [{"price": str(p), "size": str(s)} for p, s in asks],
    }])


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _returns(value):
    return lambda: value


def _raises(exc):
    def step():
        raise exc
    return step


def _advance(clock, secs, then):
    def step():
        clock.now += secs
        return then()
    return step


class FakeWS:
    """Scripted socket: each recv() runs the next step in the script."""

    def __init__(self, script):
        self.script = list(script)
        self.sent = []
        self.closed = False
        self.pings = 0

    async def send(self, msg):
        self.sent.append(msg)

    async def recv(self):
        return self.script.pop(0)()

    async def close(self):
        self.closed = True

    async def ping(self):
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(0.001)
        return waiter


def _feed(store=None, executor=None, clock=None):
    store = MarketStore(arb_threshold=0.995) if store is None else store
    executor = ArbExecutor(None, dry_run=True) if executor is None else executor
    return MarketFeed(
        "wss://fake",
        store,
        executor,
        ping_interval_sec=30,
        stale_after_sec=120,
        reconnect_delay_sec=0,
        idle_wait_sec=0.01,
        clock=clock or FakeClock(),
    )


class TestParseBookSnapshots:
    def test_book_message(self):
        books = parse_book_snapshots(_book_msg("y1", [(0.30, 50), (0.28, 100)], bids=[(0.25, 10)]))
        assert len(books) == 1
        assert books[0].asset_id == "y1"
        assert len(books[0].asks) == 2
        assert books[0].best_ask.price == 0.28
        assert books[0].best_ask.size == 100

    def test_single_object(self):
        raw = json.dumps({"asset_id": "y1", "bids": [], "asks": [{"price": "0.5", "size": "3"}]})
        assert len(parse_book_snapshots(raw)) == 1

    def test_invalid_json(self):
        assert parse_book_snapshots("not json") == []

    def test_entries_without_asks_skipped(self):
        raw = json.dumps([
            {"event_type": "price_change", "asset_id": "y1", "price": "0.5"},
            {"asset_id": "", "asks": []},
            "garbage",
        ])
        assert parse_book_snapshots(raw) == []

    def test_bad_levels_dropped(self):
        raw = json.dumps([{"asset_id": "y1", "asks": [{"price": "x", "size": "1"}, {"price": "0.4", "size": "2"}]}])
        [book] = parse_book_snapshots(raw)
        assert len(book.asks) == 1


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_updates_store(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)

        reports = await feed.handle_message(_book_msg("y1", [(0.28, 100)]))
        assert reports == []
        state = _tracked(store, "y1")
        assert state.yes_price == 0.28
        assert state.yes_size == 100

    @pytest.mark.asyncio
    async def test_arb_triggers_execution(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)

        await feed.handle_message(_book_msg("y1", [(0.28, 100)]))
        [report] = await feed.handle_message(_book_msg("n1", [(0.66, 40)]))

        assert report.status == ExecutionStatus.DRY_RUN
        assert report.size == 40.0
        assert report.expected_profit_cents == pytest.approx(6.0)
        assert feed.stats["arbs_triggered"] == 1

    @pytest.mark.asyncio
    async def test_no_trigger_at_par(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        executor = MagicMock()
        executor.execute = AsyncMock()
        feed = _feed(store, executor)

        await feed.handle_message(_book_msg("y1", [(0.50, 100)]))
        await feed.handle_message(_book_msg("n1", [(0.50, 100)]))
        executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_untracked_token_ignored(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)
        assert await feed.handle_message(_book_msg("zzz", [(0.01, 100)])) == []
        assert _tracked(store, "y1").yes_price == 0.0

    @pytest.mark.asyncio
    async def test_untracked_book_not_counted(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)
        await feed.handle_message(_book_msg("zzz", [(0.40, 100)]))
        await feed.handle_message(_book_msg("y1", [(0.40, 100)]))
        assert feed.stats["books_received"] == 1

    @pytest.mark.asyncio
    async def test_empty_book_ignored(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)
        await feed.handle_message(_book_msg("y1", []))
        assert _tracked(store, "y1").yes_price == 0.0

    @pytest.mark.asyncio
    async def test_execution_error_does_not_stop_processing(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        store.insert_if_absent(_market("y2", "n2", "eth"))
        store.update_side("n1", 0.66, 40)
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=RuntimeError("boom"))
        feed = _feed(store, executor)

        raw = json.dumps([
            {"asset_id": "y1", "asks": [{"price": "0.28", "size": "100"}]},
            {"asset_id": "y2", "asks": [{"price": "0.45", "size": "10"}]},
        ])
        assert await feed.handle_message(raw) == []
        assert _tracked(store, "y2").yes_price == 0.45


class TestConsume:
    @pytest.mark.asyncio
    async def test_subscribes_once_with_all_tokens(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)
        ws = FakeWS([_raises(ConnectionClosedOK(None, None))])

        reason = await feed.consume(ws, store.tracked_tokens())

        assert reason == CLOSED
        assert len(ws.sent) == 1
        assert json.loads(ws.sent[0]) == {"assets_ids": ["n1", "y1"], "type": "market"}

    @pytest.mark.asyncio
    async def test_stale_connection_is_dropped(self):
        clock = FakeClock()
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store, clock=clock)
        feed._ping_interval = 1000  # isolate from pings
        ws = FakeWS([_advance(clock, 121, _raises(asyncio.TimeoutError()))])

        reason = await feed.consume(ws, store.tracked_tokens())

        assert reason == STALE
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_messages_keep_connection_fresh(self):
        clock = FakeClock()
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store, clock=clock)
        feed._ping_interval = 1000
        ws = FakeWS([
            _advance(clock, 100, _returns(_book_msg("y1", [(0.4, 5)]))),
            _advance(clock, 100, _returns(_book_msg("n1", [(0.7, 5)]))),
            _raises(ConnectionClosedOK(None, None)),
        ])

        assert await feed.consume(ws, store.tracked_tokens()) == CLOSED
        assert ws.closed is False
        assert feed.stats["books_received"] == 2

    @pytest.mark.asyncio
    async def test_ping_sent_on_interval(self):
        clock = FakeClock()
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store, clock=clock)
        ws = FakeWS([
            _advance(clock, 31, _returns("[]")),
            _raises(ConnectionClosedOK(None, None)),
        ])

        assert await feed.consume(ws, store.tracked_tokens()) == CLOSED
        assert ws.pings == 1

    @pytest.mark.asyncio
    async def test_new_tokens_trigger_resubscribe(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        feed = _feed(store)

        def preload():
            store.insert_if_absent(_market("y2", "n2", "eth"))
            return "[]"

        ws = FakeWS([preload])
        reason = await feed.consume(ws, store.tracked_tokens())

        assert reason == RESUBSCRIBE
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_retired_tokens_do_not_resubscribe(self):
        store = MarketStore(arb_threshold=0.995)
        store.insert_if_absent(_market())
        store.insert_if_absent(_market("y2", "n2", "eth"))
        feed = _feed(store)

        def retire():
            store.retire(lambda s: s.asset == "eth")
            return "[]"

        ws = FakeWS([retire, _raises(ConnectionClosedOK(None, None))])
        assert await feed.consume(ws, store.tracked_tokens()) == CLOSED


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_once_idle_when_nothing_tracked(self):
        feed = _feed()
        assert await feed.run_once() is None
        assert feed.stats["connections"] == 0

    @pytest.mark.asyncio
    async def test_run_forever_reconnects(self):
        feed = _feed()
        feed.run_once = AsyncMock(side_effect=[
            RuntimeError("handshake failed"),
            STALE,
            RESUBSCRIBE,
            None,
            asyncio.CancelledError(),
        ])
        with pytest.raises(asyncio.CancelledError):
            await feed.run_forever()
        assert feed.run_once.await_count == 5


class TestHealth:
    def test_unhealthy_before_first_message(self):
        assert _feed().is_healthy() is False

    def test_health_follows_last_message(self):
        clock = FakeClock()
        feed = _feed(clock=clock)
        feed._record_message()
        assert feed.is_healthy() is True
        clock.now += 121
        assert feed.is_healthy() is False
        assert feed.is_healthy(max_silence_sec=200) is True

    @pytest.mark.asyncio
    async def test_pong_counts_as_activity(self):
        clock = FakeClock()
        feed = _feed(clock=clock)
        feed._record_message()
        clock.now += 60
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(0.001)
        feed._on_pong(waiter)
        assert feed._last_message_time == clock.now

    @pytest.mark.asyncio
    async def test_failed_pong_ignored(self):
        clock = FakeClock()
        feed = _feed(clock=clock)
        feed._record_message()
        before = feed._last_message_time
        clock.now += 60
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_exception(ConnectionClosedOK(None, None))
        feed._on_pong(waiter)
        assert feed._last_message_time == before
