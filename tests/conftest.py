"""Pytest configuration and shared fakes for the market maker tests."""

import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from marketmaker.models import (  # noqa: E402
    BestPair,
    OpenOrder,
    OrderSide,
    PlacedOrder,
    PriceLevel,
    StrategyConfig,
)


def make_pair(bid, ask, bid_qty="1", ask_qty="1") -> BestPair:
    return BestPair(
        ask=PriceLevel(Decimal(str(ask)), Decimal(str(ask_qty))),
        bid=PriceLevel(Decimal(str(bid)), Decimal(str(bid_qty))),
    )


def make_open_order(order_id="1", price="100", side=OrderSide.BUY, symbol="BTCUSDT") -> OpenOrder:
    return OpenOrder(
        id=str(order_id),
        client_order_id=f"client-{order_id}",
        symbol=symbol,
        side=side,
        price=Decimal(price),
        quantity=Decimal("0.01"),
    )


class FakeGateway:
    """In-memory gateway recording every call in order."""

    def __init__(self, open_orders=None, latency=50.0):
        self.open_orders = list(open_orders or [])
        self.latency = latency
        self.ping_error = None
        self.list_error = None
        self.cancel_errors = {}
        self.place_error = None
        self.place_gate = None
        self.place_entered = asyncio.Event()
        self.calls = []
        self.close_calls = 0

    async def ping(self):
        self.calls.append(("ping",))
        if self.ping_error:
            raise self.ping_error
        return self.latency

    async def get_open_orders(self, symbol):
        self.calls.append(("list", symbol))
        if self.list_error:
            raise self.list_error
        return list(self.open_orders)

    async def cancel_order(self, order_id, client_order_id, symbol):
        self.calls.append(("cancel", order_id, client_order_id, symbol))
        if order_id in self.cancel_errors:
            raise self.cancel_errors[order_id]
        return {"id": order_id, "status": "canceled"}

    async def place_order(self, request):
        self.calls.append(("place", request))
        self.place_entered.set()
        if self.place_gate is not None:
            await self.place_gate.wait()
        if self.place_error:
            raise self.place_error
        return PlacedOrder(
            id="42",
            client_order_id=request.new_client_order_id,
            symbol=request.symbol,
            side=request.side,
            price=request.price,
            quantity=request.quantity,
        )

    async def close(self):
        self.close_calls += 1

    def names(self):
        return [c[0] for c in self.calls]


class FakeFeed:
    """Feed whose notifications are pushed by the test."""

    def __init__(self):
        self.subscribers = []
        self.streaming_interval = None
        self.snapshot_limit = None
        self.stop_calls = 0

    def subscribe(self, callback):
        self.subscribers.append(callback)

    def unsubscribe(self, callback):
        if callback in self.subscribers:
            self.subscribers.remove(callback)

    def stream_updates(self, poll_interval):
        self.streaming_interval = poll_interval

    async def build_snapshot(self, limit):
        self.snapshot_limit = limit

    async def stop(self):
        self.stop_calls += 1

    def emit(self, best_pair):
        for callback in list(self.subscribers):
            callback(best_pair)


class ScriptedStrategy:
    """Returns the configured quote (or None) and remembers what it saw."""

    def __init__(self, quote=None, config=None):
        self.quote = quote
        self.config = config or StrategyConfig(price_precision=2, quote_asset_precision=3)
        self.seen = []

    def process(self, best_pair):
        self.seen.append(best_pair)
        return self.quote


@pytest.fixture
def logger(caplog):
    caplog.set_level(logging.DEBUG, logger="test.marketmaker")
    return logging.getLogger("test.marketmaker")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def feed():
    return FakeFeed()
