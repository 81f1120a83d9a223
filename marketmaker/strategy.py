# marketmaker/strategy.py
from typing import Dict, Optional, Protocol, Type, runtime_checkable

from .errors import ConfigurationError
from .models import BestPair, OrderSide, Quote, StrategyConfig


@runtime_checkable
class PricingStrategy(Protocol):
    """Maps a top-of-book snapshot to a desired quote, or None for 'no action'."""
    config: StrategyConfig

    def process(self, best_pair: BestPair) -> Optional[Quote]: ...


class NaiveMarketMakerStrategy:
    """
    Joins the bid side one price step inside the spread.
    Stays out of the market when the spread is too thin to improve
    the best bid without touching the best ask.
    """
    def __init__(self, config: StrategyConfig):
        if config is None:
            raise ConfigurationError("Strategy config is required")
        self.config = config

    def process(self, best_pair: BestPair) -> Optional[Quote]:
        if best_pair is None: return None

        bid = best_pair.bid.price
        ask = best_pair.ask.price
        if bid <= 0 or ask <= 0: return None
        if best_pair.spread < self.config.min_spread: return None

        price = bid + self.config.price_step
        if price >= ask:
            return None

        return Quote(direction=OrderSide.BUY, price=price, volume=self.config.trade_volume)


STRATEGIES: Dict[str, Type] = {
    "naive": NaiveMarketMakerStrategy,
}


def create_strategy(name: str, config: StrategyConfig) -> PricingStrategy:
    """Resolves a strategy by its configured name."""
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise ConfigurationError(f"Unknown strategy '{name}'. Available: {', '.join(sorted(STRATEGIES))}") from None
    return strategy_cls(config)
