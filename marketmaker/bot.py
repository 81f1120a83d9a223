# marketmaker/bot.py
import asyncio
from datetime import timedelta
from typing import List, Optional, Sequence
from uuid import uuid4

from .errors import ConfigurationError, OrderNotOpenError, TransientExchangeError, ValidationError
from .gateway import ExchangeGateway
from .market_depth import OrderBookFeed
from .models import BestPair, BotState, OpenOrder, OrderRequest, PlacedOrder, Quote, TimeInForce, round_to_precision
from .strategy import PricingStrategy

LATENCY_WARNING_MS = 1000


class MarketMakerBot:
    """
    Keeps one fresh limit order resting around the top of book of a single symbol.

    Every best bid/ask change runs a reconciliation cycle:
    list open orders -> cancel them -> ask the strategy for a quote -> place it.

    Notifications land in a single-slot mailbox drained by one worker task, so
    only one cycle is ever in flight. A notification that arrives while another
    one is still waiting replaces it (latest wins); the replaced one is counted
    in `notifications_dropped`.
    """
    def __init__(self, symbol: str, strategy: PricingStrategy, gateway: ExchangeGateway,
                 feed: OrderBookFeed, logger, depth_limit: int = 100,
                 poll_interval: timedelta = timedelta(milliseconds=1000)):
        if not symbol:
            raise ConfigurationError("symbol is required")
        for name, value in (("strategy", strategy), ("gateway", gateway), ("feed", feed), ("logger", logger)):
            if value is None:
                raise ConfigurationError(f"{name} is required")

        self.symbol = symbol
        self.strategy = strategy
        self.gateway = gateway
        self.feed = feed
        self.logger = logger
        self.depth_limit = depth_limit
        self.poll_interval = poll_interval

        self.state = BotState.IDLE
        self.cycles_completed = 0
        self.notifications_dropped = 0
        self.last_best_pair: Optional[BestPair] = None
        self.last_placed_order: Optional[PlacedOrder] = None

        self._mailbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._cycle_lock = asyncio.Lock()
        self._worker_task: Optional[asyncio.Task] = None
        self._disposed = False

    def _rejected(self, reason: str) -> ValidationError:
        self.logger.error(f"❌ Rejected: {reason}")
        return ValidationError(reason)

    # --- Exchange operations ---

    async def validate_connectivity(self) -> Optional[float]:
        """
        Pings the exchange. A failure is logged, never raised: the bot stays runnable.
        Returns the latency in ms, or None when the ping failed.
        """
        try:
            latency = await self.gateway.ping()
        except TransientExchangeError as e:
            self.logger.error(f"❌ Connectivity check failed: {e}")
            return None

        msg = f"Connection was established successfully. Approximate ping time: {latency:.0f} ms"
        if latency > LATENCY_WARNING_MS:
            self.logger.warning(f"🐢 DEGRADED: {msg}")
        else:
            self.logger.info(f"📡 {msg}")
        return latency

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        if not symbol:
            raise self._rejected("Invalid symbol value")
        return list(await self.gateway.get_open_orders(symbol) or [])

    async def cancel_orders(self, orders: Optional[Sequence[OpenOrder]]) -> int:
        """
        Cancels each order in turn. A failed cancel is logged and the rest
        still go out. Returns how many cancels the exchange accepted.
        """
        if orders is None:
            raise self._rejected("orders is required")

        cancelled = 0
        for order in orders:
            try:
                await self.gateway.cancel_order(order.id, order.client_order_id, order.symbol)
                cancelled += 1
            except OrderNotOpenError as e:
                self.logger.warning(f"⚠️ Cancel skipped for #{order.id}: {e}")
            except TransientExchangeError as e:
                self.logger.error(f"❌ Cancel failed for #{order.id}: {e}")
        return cancelled

    async def create_order(self, request: Optional[OrderRequest]) -> Optional[PlacedOrder]:
        """Submits the order. Gateway errors are logged and yield None."""
        if request is None:
            raise self._rejected("order request is required")

        try:
            return await self.gateway.place_order(request)
        except TransientExchangeError as e:
            self.logger.error(f"❌ Order rejected: {e}")
            return None

    def build_order_request(self, quote: Quote) -> OrderRequest:
        config = self.strategy.config
        return OrderRequest(
            symbol=self.symbol,
            side=quote.direction,
            price=round_to_precision(quote.price, config.price_precision),
            quantity=round_to_precision(quote.volume, config.quote_asset_precision),
            new_client_order_id=uuid4().hex,
            time_in_force=TimeInForce.GOOD_TILL_CANCELED,
            recv_window=config.receive_window_ms,
        )

    # --- Reconciliation ---

    async def reconcile(self, best_pair: Optional[BestPair]) -> Optional[PlacedOrder]:
        """Runs one cycle. Cycles never overlap, even when called directly."""
        if best_pair is None:
            raise self._rejected("best pair event payload is required")

        async with self._cycle_lock:
            if self.state is BotState.STOPPED: return None

            previous_state = self.state
            self.state = BotState.RECONCILING
            try:
                placed = await self._run_cycle(best_pair)
                self.cycles_completed += 1
                return placed
            finally:
                if self.state is BotState.RECONCILING:
                    self.state = previous_state

    async def _run_cycle(self, best_pair: BestPair) -> Optional[PlacedOrder]:
        try:
            open_orders = await self.get_open_orders(self.symbol)
        except TransientExchangeError as e:
            # Placing without seeing the resting orders could leave duplicates
            self.logger.error(f"❌ Could not list open orders: {e}")
            return None

        if open_orders:
            await self.cancel_orders(open_orders)

        if self.state is BotState.STOPPED: return None

        quote = self.strategy.process(best_pair)
        if quote is None:
            self.logger.debug(f"No quote for bid {best_pair.bid.price} / ask {best_pair.ask.price}")
            return None

        request = self.build_order_request(quote)
        if request.price <= 0 or request.quantity <= 0:
            self.logger.warning(f"⚠️ Quote rounds to nothing: {request.quantity} @ {request.price}. Skipped.")
            return None

        placed = await self.create_order(request)
        if placed is not None:
            self.last_placed_order = placed
            self.logger.info(f"✅ Limit order was created. Side: {placed.side.value} | Price: {placed.price} | Volume: {placed.quantity}")
        return placed

    def on_best_pair_changed(self, best_pair: Optional[BestPair]):
        """Feed callback. Never blocks; the worker picks the pair up."""
        if self.state is BotState.STOPPED: return
        if best_pair is not None:
            self.last_best_pair = best_pair

        if self._mailbox.full():
            self._mailbox.get_nowait()
            self._mailbox.task_done()
            self.notifications_dropped += 1
            self.logger.debug("Pending best pair superseded by a newer one")
        self._mailbox.put_nowait(best_pair)

    async def _worker(self):
        while True:
            best_pair = await self._mailbox.get()
            try:
                await self.reconcile(best_pair)
            except ValidationError:
                # logged where it was raised
                pass
            except Exception as e:
                self.logger.exception(f"💥 Unexpected error in reconciliation cycle: {e}")
            finally:
                self._mailbox.task_done()

    def _drain_mailbox(self):
        while not self._mailbox.empty():
            self._mailbox.get_nowait()
            self._mailbox.task_done()

    async def wait_idle(self):
        """Resolves once every queued notification has been reconciled."""
        await self._mailbox.join()

    # --- Lifecycle ---

    async def run(self):
        """
        Validates connectivity, wires the cycle handler to the feed and lets the
        feed start streaming. Returns once the order book snapshot is built;
        the cycles themselves run on the worker task.
        """
        if self.state is not BotState.IDLE:
            self.logger.warning(f"Bot is {self.state.value}, run() ignored")
            return

        self.state = BotState.VALIDATING
        await self.validate_connectivity()
        if self.state is BotState.STOPPED: return

        self.feed.subscribe(self.on_best_pair_changed)
        self._worker_task = asyncio.create_task(self._worker(), name=f"reconcile-{self.symbol}")
        self.state = BotState.SUBSCRIBED

        self.feed.stream_updates(self.poll_interval)
        try:
            await self.feed.build_snapshot(self.depth_limit)
        except TransientExchangeError as e:
            # only after the feed gave up or was stopped; stop() still tears it down
            self.logger.error(f"❌ Order book snapshot failed: {e}")

    async def stop(self):
        if self.state is BotState.STOPPED: return
        self.logger.warning("🛑 Bot was stopped")
        await self.dispose()

    async def dispose(self):
        """
        Tears everything down exactly once: abandon the in-flight cycle and any
        queued notification, unsubscribe, stop the feed, release the exchange client.
        """
        self.state = BotState.STOPPED
        if self._disposed: return
        self._disposed = True

        try:
            task = self._worker_task
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            self._drain_mailbox()
            try:
                self.feed.unsubscribe(self.on_best_pair_changed)
            finally:
                await self.feed.stop()
        finally:
            await self.gateway.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
