# marketmaker/models.py
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Optional


class OrderSide(Enum):
    BUY = "buy"
    SELL = "sell"


class TimeInForce(Enum):
    GOOD_TILL_CANCELED = "GTC"
    IMMEDIATE_OR_CANCEL = "IOC"
    FILL_OR_KILL = "FOK"


class BotState(Enum):
    """
    Lifecycle of the market maker bot.
    STOPPED is terminal: once entered no further cycles start.
    """
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    SUBSCRIBED = "SUBSCRIBED"
    RECONCILING = "RECONCILING"
    STOPPED = "STOPPED"


def round_to_precision(value: Decimal, digits: int) -> Decimal:
    """Rounds half-to-even to the given number of decimal places."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_EVEN)


@dataclass(slots=True, frozen=True)
class PriceLevel:
    price: Decimal
    quantity: Decimal


@dataclass(slots=True, frozen=True)
class BestPair:
    """
    Top-of-book snapshot produced by the order book feed.
    Consumed once per reconciliation cycle.
    """
    ask: PriceLevel
    bid: PriceLevel

    @property
    def spread(self) -> Decimal:
        return self.ask.price - self.bid.price

    @property
    def mid_price(self) -> Decimal:
        return (self.ask.price + self.bid.price) / 2


@dataclass(slots=True, frozen=True)
class Quote:
    """Desired order returned by a pricing strategy."""
    direction: OrderSide
    price: Decimal
    volume: Decimal


@dataclass(slots=True, frozen=True)
class StrategyConfig:
    """
    Precision and timing parameters shared by the strategy and the bot.
    `min_spread` and `trade_volume` tune the naive strategy.
    """
    price_precision: int
    quote_asset_precision: int
    receive_window: timedelta = timedelta(seconds=5)
    trade_volume: Decimal = Decimal("0.01")
    min_spread: Decimal = Decimal("0")

    @property
    def price_step(self) -> Decimal:
        return Decimal(1).scaleb(-self.price_precision)

    @property
    def receive_window_ms(self) -> int:
        return int(self.receive_window.total_seconds() * 1000)


@dataclass(slots=True, frozen=True)
class OrderRequest:
    """Exchange-bound limit order, built fresh every cycle."""
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    new_client_order_id: str
    order_type: str = "limit"
    time_in_force: TimeInForce = TimeInForce.GOOD_TILL_CANCELED
    recv_window: int = 5000


@dataclass(slots=True, frozen=True)
class OpenOrder:
    """Read-only snapshot of a resting order. The exchange owns the real state."""
    id: str
    client_order_id: Optional[str]
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    status: str = "open"


@dataclass(slots=True, frozen=True)
class PlacedOrder:
    id: Optional[str]
    client_order_id: Optional[str]
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    status: str = field(default="open")
