"""Tests for the ccxt-backed gateways and their error classification."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt
import pytest

from marketmaker.errors import ConfigurationError, OrderNotOpenError, TransientExchangeError
from marketmaker.gateway import CcxtGateway, DryRunGateway, create_exchange_client, create_gateway
from marketmaker.models import OrderRequest, OrderSide


def make_client():
    client = MagicMock()
    client.fetch_time = AsyncMock(return_value=1700000000000)
    client.fetch_open_orders = AsyncMock(return_value=[])
    client.cancel_order = AsyncMock(return_value={"id": "1", "status": "canceled"})
    client.create_order = AsyncMock(return_value={
        "id": "555",
        "clientOrderId": "abc",
        "symbol": "BTC/USDT",
        "side": "buy",
        "price": 101.24,
        "amount": 0.012,
        "status": "open",
    })
    client.close = AsyncMock()
    return client


def make_request():
    return OrderRequest(
        symbol="BTC/USDT",
        side=OrderSide.BUY,
        price=Decimal("101.24"),
        quantity=Decimal("0.012"),
        new_client_order_id="abc",
        recv_window=5000,
    )


@pytest.fixture
def client():
    return make_client()


class TestCcxtGateway:

    def test_requires_client(self, logger):
        with pytest.raises(ConfigurationError):
            CcxtGateway(None, logger)

    @pytest.mark.asyncio
    async def test_ping_returns_latency(self, client, logger):
        latency = await CcxtGateway(client, logger).ping()
        assert latency >= 0
        client.fetch_time.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ping_failure_is_transient(self, client, logger):
        client.fetch_time.side_effect = ccxt.RequestTimeout("timed out")
        with pytest.raises(TransientExchangeError, match="RequestTimeout"):
            await CcxtGateway(client, logger).ping()

    @pytest.mark.asyncio
    async def test_open_orders_are_mapped(self, client, logger):
        client.fetch_open_orders.return_value = [{
            "id": 1,
            "clientOrderId": "c1",
            "symbol": "BTC/USDT",
            "side": "sell",
            "price": 100.5,
            "amount": 0.02,
            "status": "open",
        }]

        orders = await CcxtGateway(client, logger).get_open_orders("BTC/USDT")

        assert len(orders) == 1
        order = orders[0]
        assert order.id == "1"
        assert order.client_order_id == "c1"
        assert order.side is OrderSide.SELL
        assert order.price == Decimal("100.5")
        assert order.quantity == Decimal("0.02")
        client.fetch_open_orders.assert_awaited_once_with("BTC/USDT")

    @pytest.mark.asyncio
    async def test_cancel_passes_client_order_id(self, client, logger):
        await CcxtGateway(client, logger).cancel_order("1", "c1", "BTC/USDT")
        client.cancel_order.assert_awaited_once_with("1", "BTC/USDT", {"origClientOrderId": "c1"})

    @pytest.mark.asyncio
    async def test_cancel_of_filled_order_is_classified(self, client, logger):
        client.cancel_order.side_effect = ccxt.OrderNotFound("Unknown order sent.")
        with pytest.raises(OrderNotOpenError):
            await CcxtGateway(client, logger).cancel_order("1", None, "BTC/USDT")

    @pytest.mark.asyncio
    async def test_cancel_network_error_is_transient_only(self, client, logger):
        client.cancel_order.side_effect = ccxt.NetworkError("reset by peer")
        with pytest.raises(TransientExchangeError) as info:
            await CcxtGateway(client, logger).cancel_order("1", None, "BTC/USDT")
        assert not isinstance(info.value, OrderNotOpenError)

    @pytest.mark.asyncio
    async def test_place_order_sends_limit_gtc(self, client, logger):
        placed = await CcxtGateway(client, logger).place_order(make_request())

        client.create_order.assert_awaited_once_with(
            "BTC/USDT", "limit", "buy", 0.012, 101.24,
            {"newClientOrderId": "abc", "timeInForce": "GTC", "recvWindow": 5000},
        )
        assert placed.id == "555"
        assert placed.price == Decimal("101.24")
        assert placed.quantity == Decimal("0.012")

    @pytest.mark.asyncio
    async def test_place_order_rejection_is_transient(self, client, logger):
        client.create_order.side_effect = ccxt.InsufficientFunds("balance too low")
        with pytest.raises(TransientExchangeError, match="InsufficientFunds"):
            await CcxtGateway(client, logger).place_order(make_request())

    @pytest.mark.asyncio
    async def test_close_releases_once(self, client, logger):
        gateway = CcxtGateway(client, logger)

        await gateway.close()
        await gateway.close()

        client.close.assert_awaited_once()
        assert gateway.closed

    @pytest.mark.asyncio
    async def test_no_calls_after_close(self, client, logger):
        gateway = CcxtGateway(client, logger)
        await gateway.close()

        with pytest.raises(TransientExchangeError, match="released"):
            await gateway.get_open_orders("BTC/USDT")
        client.fetch_open_orders.assert_not_awaited()


class TestDryRunGateway:

    @pytest.mark.asyncio
    async def test_uses_test_endpoint_and_echoes_request(self, client, logger):
        client.create_order.return_value = {}
        request = make_request()

        placed = await DryRunGateway(client, logger).place_order(request)

        params = client.create_order.await_args.args[5]
        assert params["test"] is True
        assert params["timeInForce"] == "GTC"
        assert placed.status == "test"
        assert placed.price == request.price
        assert placed.quantity == request.quantity
        assert placed.client_order_id == "abc"

    @pytest.mark.asyncio
    async def test_shares_error_contract(self, client, logger):
        client.create_order.side_effect = ccxt.InvalidOrder("Filter failure: PRICE_FILTER")
        with pytest.raises(TransientExchangeError):
            await DryRunGateway(client, logger).place_order(make_request())


class TestFactories:

    def test_dry_run_flag_selects_gateway(self, client, logger):
        dry = create_gateway(SimpleNamespace(dry_run=True, exchange=None), logger, client=client)
        live = create_gateway(SimpleNamespace(dry_run=False, exchange=None), logger, client=client)

        assert isinstance(dry, DryRunGateway)
        assert type(live) is CcxtGateway

    def test_unknown_exchange_is_configuration_error(self):
        settings = SimpleNamespace(id="no_such_exchange", api_key="", secret="", password="",
                                   network_timeout_ms=1000, environment="testnet")
        with pytest.raises(ConfigurationError, match="no_such_exchange"):
            create_exchange_client(settings)
