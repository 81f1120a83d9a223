# marketmaker/market_depth.py
import asyncio
import json
from collections import deque
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import aiohttp
import ccxt.async_support as ccxt

from .errors import TransientExchangeError
from .models import BestPair, PriceLevel

BestPairCallback = Callable[[BestPair], None]


@runtime_checkable
class OrderBookFeed(Protocol):
    """Top-of-book source the bot subscribes to."""
    def subscribe(self, callback: BestPairCallback): ...
    def unsubscribe(self, callback: BestPairCallback): ...
    def stream_updates(self, poll_interval: timedelta): ...
    async def build_snapshot(self, limit: int): ...
    async def stop(self): ...


def _level(raw: Sequence[Any]) -> tuple:
    return Decimal(str(raw[0])), Decimal(str(raw[1]))


class MarketDepth:
    """
    Local replica of one symbol's order book.
    Fires the subscribed callbacks only when the best bid/ask actually moves.
    """
    def __init__(self, symbol: str):
        self.symbol = symbol
        self.asks: Dict[Decimal, Decimal] = {}
        self.bids: Dict[Decimal, Decimal] = {}
        self.last_update_id: Optional[int] = None
        self.best_pair: Optional[BestPair] = None
        self._subscribers: List[BestPairCallback] = []

    def subscribe(self, callback: BestPairCallback):
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: BestPairCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def reset(self):
        self.asks.clear()
        self.bids.clear()
        self.last_update_id = None

    @staticmethod
    def _apply(book: Dict[Decimal, Decimal], levels: Iterable[Sequence[Any]]):
        for raw in levels:
            price, qty = _level(raw)
            if qty == 0:
                book.pop(price, None)
            else:
                book[price] = qty

    def _compute_best_pair(self) -> Optional[BestPair]:
        if not self.asks or not self.bids: return None
        ask = min(self.asks)
        bid = max(self.bids)
        return BestPair(ask=PriceLevel(ask, self.asks[ask]), bid=PriceLevel(bid, self.bids[bid]))

    def update_depth(self, asks: Iterable[Sequence[Any]], bids: Iterable[Sequence[Any]], update_id: int) -> bool:
        """
        Applies price levels (quantity 0 removes a level).
        Updates not newer than the last applied one are ignored.
        Returns True when the best pair changed.
        """
        if self.last_update_id is not None and update_id <= self.last_update_id:
            return False

        self._apply(self.asks, asks)
        self._apply(self.bids, bids)
        self.last_update_id = update_id

        best_pair = self._compute_best_pair()
        if best_pair is None or best_pair == self.best_pair:
            return False

        self.best_pair = best_pair
        for callback in list(self._subscribers):
            callback(best_pair)
        return True


class MarketDepthManager:
    """
    Builds a MarketDepth from a REST snapshot and keeps it current from the
    exchange's incremental depth stream. Diffs that arrive before the
    snapshot are buffered (the newest `buffer_limit` of them) and replayed
    once it is loaded. A failed snapshot is retried every `retry_delay`
    seconds, forever unless `max_snapshot_attempts` is set.
    """
    def __init__(self, rest_client: ccxt.Exchange, symbol: str, logger,
                 ws_base_url: str = "wss://stream.binance.com:9443/ws",
                 market_depth: Optional[MarketDepth] = None,
                 retry_delay: float = 2, max_snapshot_attempts: Optional[int] = None,
                 buffer_limit: int = 10000):
        self.rest_client = rest_client
        self.symbol = symbol
        self.logger = logger
        self.ws_base_url = ws_base_url
        self.market_depth = market_depth or MarketDepth(symbol)
        self.retry_delay = retry_delay
        self.max_snapshot_attempts = max_snapshot_attempts

        self.running = False
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=buffer_limit)
        self._snapshot_ready = False
        self._stopped = False

    def subscribe(self, callback: BestPairCallback):
        self.market_depth.subscribe(callback)

    def unsubscribe(self, callback: BestPairCallback):
        self.market_depth.unsubscribe(callback)

    def stream_url(self, poll_interval: timedelta) -> str:
        # Binance publishes depth diffs every 100ms or every 1000ms
        speed = 100 if poll_interval <= timedelta(milliseconds=100) else 1000
        stream = f"{self.symbol.replace('/', '').lower()}@depth@{speed}ms"
        return f"{self.ws_base_url}/{stream}"

    def stream_updates(self, poll_interval: timedelta):
        """Starts the background websocket task. Returns immediately."""
        if self.running: return
        self.running = True
        self._session = aiohttp.ClientSession()
        url = self.stream_url(poll_interval)
        self.logger.info(f"⚡ STREAMING DEPTH FOR {self.symbol} | {url}")
        self._task = asyncio.create_task(self._run_stream_forever(url))

    async def _run_stream_forever(self, url: str):
        while self.running:
            try:
                await self._connect(url)
            except Exception as e:
                self.logger.error(f"WS Error: {e}")
            if self.running:
                await asyncio.sleep(self.retry_delay)

    async def _connect(self, url: str):
        async with self._session.ws_connect(url) as ws:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_event(json.loads(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    break

    def handle_event(self, event: Dict[str, Any]):
        """Applies one depthUpdate event, or buffers it until the snapshot exists."""
        if 'u' not in event: return
        if not self._snapshot_ready:
            self._buffer.append(event)
            return
        self.market_depth.update_depth(event.get('a', []), event.get('b', []), int(event['u']))

    async def build_snapshot(self, limit: int):
        """
        Loads the REST snapshot, then replays the buffered diffs newer than it.
        Raises TransientExchangeError only when the attempts run out or the
        feed is stopped while retrying.
        """
        book = await self._fetch_snapshot(limit)

        snapshot_id = int(book.get('nonce') or 0)
        self.market_depth.reset()
        self.market_depth.update_depth(book.get('asks', []), book.get('bids', []), snapshot_id)

        pending = list(self._buffer)
        self._buffer.clear()
        self._snapshot_ready = True
        replayed = 0
        for event in pending:
            if int(event['u']) > snapshot_id:
                self.market_depth.update_depth(event.get('a', []), event.get('b', []), int(event['u']))
                replayed += 1
        self.logger.info(f"📚 Order book built for {self.symbol} | Snapshot #{snapshot_id} | Replayed: {replayed}")

    async def _fetch_snapshot(self, limit: int) -> Dict[str, Any]:
        attempt = 0
        while True:
            if self._stopped:
                raise TransientExchangeError("feed stopped before the snapshot was built")
            attempt += 1
            try:
                return await self.rest_client.fetch_order_book(self.symbol, limit)
            except ccxt.BaseError as e:
                error = TransientExchangeError(f"fetch_order_book failed: {type(e).__name__}: {e}")
                self.logger.error(f"❌ Snapshot attempt {attempt} failed: {error}")
                if self.max_snapshot_attempts is not None and attempt >= self.max_snapshot_attempts:
                    raise error from e
            await asyncio.sleep(self.retry_delay)

    async def stop(self):
        self._stopped = True
        if not self.running and self._session is None: return
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session:
            await self._session.close()
            self._session = None
