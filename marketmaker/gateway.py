# marketmaker/gateway.py
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import ccxt.async_support as ccxt

from .errors import ConfigurationError, OrderNotOpenError, TransientExchangeError
from .models import OpenOrder, OrderRequest, OrderSide, PlacedOrder


@runtime_checkable
class ExchangeGateway(Protocol):
    """Request/response facade the bot talks to. Live and dry-run share it."""
    async def ping(self) -> float: ...
    async def get_open_orders(self, symbol: str) -> List[OpenOrder]: ...
    async def cancel_order(self, order_id: str, client_order_id: Optional[str], symbol: str) -> Dict[str, Any]: ...
    async def place_order(self, request: OrderRequest) -> PlacedOrder: ...
    async def close(self) -> None: ...


def _to_decimal(value: Any) -> Decimal:
    if value is None: return Decimal("0")
    return Decimal(str(value))


def _parse_side(value: Optional[str]) -> OrderSide:
    return OrderSide.SELL if (value or "").lower() == "sell" else OrderSide.BUY


class CcxtGateway:
    """
    Live gateway over a ccxt async exchange client.
    Translates ccxt exceptions into the bot's error taxonomy so callers
    only ever handle TransientExchangeError / OrderNotOpenError.
    """
    def __init__(self, client: ccxt.Exchange, logger):
        if client is None:
            raise ConfigurationError("Exchange client is required")
        self.client = client
        self.logger = logger
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self, action: str):
        if self._closed:
            raise TransientExchangeError(f"{action} failed: exchange client already released")

    @staticmethod
    def _translate(action: str, exc: Exception) -> TransientExchangeError:
        if isinstance(exc, ccxt.OrderNotFound):
            return OrderNotOpenError(f"{action} failed: order is no longer open ({exc})")
        return TransientExchangeError(f"{action} failed: {type(exc).__name__}: {exc}")

    async def ping(self) -> float:
        """Round trip of the server time endpoint, in milliseconds."""
        self._ensure_open("ping")
        started = time.perf_counter()
        try:
            await self.client.fetch_time()
        except ccxt.BaseError as e:
            raise self._translate("ping", e) from e
        return (time.perf_counter() - started) * 1000

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        self._ensure_open("fetch_open_orders")
        try:
            raw_orders = await self.client.fetch_open_orders(symbol)
        except ccxt.BaseError as e:
            raise self._translate("fetch_open_orders", e) from e

        return [
            OpenOrder(
                id=str(o['id']),
                client_order_id=o.get('clientOrderId'),
                symbol=o.get('symbol') or symbol,
                side=_parse_side(o.get('side')),
                price=_to_decimal(o.get('price')),
                quantity=_to_decimal(o.get('amount')),
                status=o.get('status') or "open",
            )
            for o in raw_orders
        ]

    async def cancel_order(self, order_id: str, client_order_id: Optional[str], symbol: str) -> Dict[str, Any]:
        self._ensure_open("cancel_order")
        params = {}
        if client_order_id:
            params['origClientOrderId'] = client_order_id
        try:
            return await self.client.cancel_order(order_id, symbol, params)
        except ccxt.BaseError as e:
            raise self._translate(f"cancel_order {order_id}", e) from e

    def _order_params(self, request: OrderRequest) -> Dict[str, Any]:
        return {
            'newClientOrderId': request.new_client_order_id,
            'timeInForce': request.time_in_force.value,
            'recvWindow': request.recv_window,
        }

    async def _submit(self, request: OrderRequest, params: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_open("create_order")
        try:
            return await self.client.create_order(
                request.symbol,
                request.order_type,
                request.side.value,
                float(request.quantity),
                float(request.price),
                params,
            )
        except ccxt.BaseError as e:
            raise self._translate("create_order", e) from e

    async def place_order(self, request: OrderRequest) -> PlacedOrder:
        res = await self._submit(request, self._order_params(request))
        return PlacedOrder(
            id=str(res['id']) if res.get('id') is not None else None,
            client_order_id=res.get('clientOrderId') or request.new_client_order_id,
            symbol=res.get('symbol') or request.symbol,
            side=_parse_side(res.get('side') or request.side.value),
            price=_to_decimal(res['price']) if res.get('price') is not None else request.price,
            quantity=_to_decimal(res['amount']) if res.get('amount') is not None else request.quantity,
            status=res.get('status') or "open",
        )

    async def close(self):
        """Releases the underlying HTTP session. Safe to call more than once."""
        if self._closed: return
        self._closed = True
        await self.client.close()
        self.logger.info("🔌 Exchange client released")


class DryRunGateway(CcxtGateway):
    """
    Sends orders to the exchange's test-order endpoint.
    The exchange validates them but never books them, so the
    request is echoed back as the placed order.
    """
    async def place_order(self, request: OrderRequest) -> PlacedOrder:
        params = self._order_params(request)
        params['test'] = True
        await self._submit(request, params)
        return PlacedOrder(
            id=None,
            client_order_id=request.new_client_order_id,
            symbol=request.symbol,
            side=request.side,
            price=request.price,
            quantity=request.quantity,
            status="test",
        )


def create_exchange_client(settings) -> ccxt.Exchange:
    """Builds the ccxt client from ExchangeSettings."""
    try:
        ex_class = getattr(ccxt, settings.id)
    except AttributeError:
        raise ConfigurationError(f"Unsupported exchange '{settings.id}'") from None

    client = ex_class({
        'apiKey': settings.api_key,
        'secret': settings.secret,
        'password': settings.password,
        'timeout': settings.network_timeout_ms,
        'enableRateLimit': True,
        'options': {'defaultType': 'spot'}
    })
    if settings.environment == 'testnet':
        client.set_sandbox_mode(True)
    return client


def create_gateway(settings, logger, client: Optional[ccxt.Exchange] = None) -> CcxtGateway:
    """
    Picks live or dry-run placement from the runtime `dry_run` flag.
    Both gateways present the same contract to the bot.
    """
    client = client or create_exchange_client(settings.exchange)
    if settings.dry_run:
        logger.info("🔵 DRY RUN: orders go to the test endpoint and are never booked")
        return DryRunGateway(client, logger)
    return CcxtGateway(client, logger)
