# main.py
import asyncio
import sys

import questionary
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from marketmaker.bot import MarketMakerBot
from marketmaker.config import BotSettings, load_settings
from marketmaker.errors import ConfigurationError, MarketMakerError
from marketmaker.gateway import create_exchange_client, create_gateway
from marketmaker.logger import get_child_logger, setup_console_logger
from marketmaker.market_depth import MarketDepthManager
from marketmaker.models import BotState
from marketmaker.strategy import create_strategy

# --- UI HELPER FUNCTIONS ---

def startup_selection(settings: BotSettings) -> str:
    """Interactive CLI to pick the pair and confirm live trading."""
    print("\n📈 SINGLE PAIR MARKET MAKER \n")
    symbol = settings.symbol
    if not symbol:
        symbol = questionary.select("Select Pair to Quote:", choices=settings.supported_symbols).ask()
    if not symbol:
        print("No pair selected. Exiting.")
        sys.exit()

    if not settings.dry_run:
        live = questionary.confirm(f"dry_run is OFF. Place LIVE orders on {symbol}?", default=False).ask()
        if not live:
            print("Live trading not confirmed. Exiting.")
            sys.exit()
    return symbol


def generate_dashboard(bot: MarketMakerBot) -> Panel:
    """Status panel: top of book, cycle counters and the last order placed."""
    table = Table(title=f"📡 {bot.symbol} Market Maker")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right", style="green")

    table.add_row("State", bot.state.value)

    pair = bot.last_best_pair
    if pair:
        table.add_row("Best Bid", f"{pair.bid.price} x {pair.bid.quantity}")
        table.add_row("Best Ask", f"{pair.ask.price} x {pair.ask.quantity}")
        table.add_row("Spread", f"{pair.spread}")
    else:
        table.add_row("Best Bid", "-")
        table.add_row("Best Ask", "-")

    table.add_row("Cycles", str(bot.cycles_completed))
    table.add_row("Superseded", str(bot.notifications_dropped))

    order = bot.last_placed_order
    table.add_row("Last Order", f"{order.side.value.upper()} {order.quantity} @ {order.price} [{order.status}]" if order else "-")

    style = "white on blue" if bot.state is not BotState.STOPPED else "white on red"
    return Panel(table, style=style)

# --- MAIN CONTROLLER ---

class MarketMakerApp:
    def __init__(self, settings: BotSettings):
        self.settings = settings
        self.logger = setup_console_logger("MarketMaker", settings.log_level)

    def build_bot(self) -> MarketMakerBot:
        s = self.settings
        strategy = create_strategy(s.strategy.name, s.strategy.config)
        client = create_exchange_client(s.exchange)
        gateway = create_gateway(s, get_child_logger(self.logger, "gateway"), client=client)
        feed = MarketDepthManager(client, s.symbol, get_child_logger(self.logger, "feed"), ws_base_url=s.feed.ws_base_url)
        return MarketMakerBot(
            symbol=s.symbol,
            strategy=strategy,
            gateway=gateway,
            feed=feed,
            logger=self.logger,
            depth_limit=s.feed.depth_limit,
            poll_interval=s.feed.poll_interval,
        )

    async def run(self):
        bot = self.build_bot()
        async with bot:
            print("Initializing Diagnostic Checks...")
            await bot.run()

            console = Console()
            with Live(console=console, refresh_per_second=4) as live:
                while bot.state is not BotState.STOPPED:
                    live.update(generate_dashboard(bot))
                    await asyncio.sleep(0.25)
        print("Shutting down resources...")


def main():
    try:
        settings = load_settings("config.yaml")
        symbol = startup_selection(settings)
        app = MarketMakerApp(settings.with_symbol(symbol))
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    try:
        import uvloop
        runner = uvloop.run
    except ImportError:
        runner = asyncio.run

    try:
        runner(app.run())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()
    except MarketMakerError as e:
        print(f"❌ Bot halted: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
