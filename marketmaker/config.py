# marketmaker/config.py
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import yaml

from .errors import ConfigurationError
from .models import StrategyConfig


@dataclass(frozen=True)
class ExchangeSettings:
    id: str
    api_key: str = ""
    secret: str = ""
    password: str = ""
    environment: str = "testnet"
    network_timeout_ms: int = 10000


@dataclass(frozen=True)
class StrategySettings:
    name: str
    config: StrategyConfig


@dataclass(frozen=True)
class FeedSettings:
    ws_base_url: str = "wss://stream.binance.com:9443/ws"
    poll_interval: timedelta = timedelta(milliseconds=1000)
    depth_limit: int = 100


@dataclass(frozen=True)
class BotSettings:
    exchange: ExchangeSettings
    strategy: StrategySettings
    feed: FeedSettings
    supported_symbols: List[str] = field(default_factory=list)
    symbol: Optional[str] = None
    dry_run: bool = True
    log_level: str = "INFO"

    def with_symbol(self, symbol: str) -> "BotSettings":
        return replace(self, symbol=symbol)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name)
    if not isinstance(value, dict):
        raise ConfigurationError(f"Missing '{name}' section in config")
    return value


def _decimal(section: dict, key: str, default: str) -> Decimal:
    try:
        return Decimal(str(section.get(key, default)))
    except InvalidOperation:
        raise ConfigurationError(f"'{key}' must be a number, got {section.get(key)!r}") from None


def _int(section: dict, key: str, default: Optional[int] = None) -> int:
    value = section.get(key, default)
    if value is None:
        raise ConfigurationError(f"Missing required setting '{key}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}") from None


def parse_settings(raw: dict) -> BotSettings:
    """Validates a raw config mapping into BotSettings."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Config root must be a mapping")

    system = raw.get('system') or {}
    ex = _section(raw, 'exchange')
    perf = raw.get('performance') or {}
    strat = _section(raw, 'strategy')
    feed = raw.get('feed') or {}

    if not ex.get('id'):
        raise ConfigurationError("Missing required setting 'exchange.id'")

    exchange = ExchangeSettings(
        id=ex['id'],
        api_key=ex.get('api_key') or "",
        secret=ex.get('secret') or "",
        password=ex.get('password') or "",
        environment=system.get('environment', 'testnet'),
        network_timeout_ms=_int(perf, 'network_timeout_ms', 10000),
    )

    strategy_config = StrategyConfig(
        price_precision=_int(strat, 'price_precision'),
        quote_asset_precision=_int(strat, 'quote_asset_precision'),
        receive_window=timedelta(milliseconds=_int(strat, 'receive_window_ms', 5000)),
        trade_volume=_decimal(strat, 'trade_volume', "0.01"),
        min_spread=_decimal(strat, 'min_spread', "0"),
    )
    if strategy_config.price_precision < 0 or strategy_config.quote_asset_precision < 0:
        raise ConfigurationError("Precisions must not be negative")

    feed_settings = FeedSettings(
        ws_base_url=feed.get('ws_base_url', FeedSettings.ws_base_url),
        poll_interval=timedelta(milliseconds=_int(feed, 'poll_interval_ms', 1000)),
        depth_limit=_int(feed, 'depth_limit', 100),
    )

    symbols = raw.get('supported_symbols') or []
    symbol = raw.get('symbol')
    if not symbol and not symbols:
        raise ConfigurationError("Configure 'symbol' or a non-empty 'supported_symbols' list")

    return BotSettings(
        exchange=exchange,
        strategy=StrategySettings(name=strat.get('name', 'naive'), config=strategy_config),
        feed=feed_settings,
        supported_symbols=list(symbols),
        symbol=symbol,
        # Live trading requires an explicit dry_run: false
        dry_run=bool(system.get('dry_run', True)),
        log_level=str(system.get('log_level', 'INFO')).upper(),
    )


def load_settings(path: str = "config.yaml") -> BotSettings:
    try:
        with open(path, "r") as f: raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    return parse_settings(raw)
