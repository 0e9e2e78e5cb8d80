"""
Live Quote Stream: Main Orchestrator.
Ties all components together: config, logging, price feed, dashboard, shutdown.
"""

from __future__ import annotations
import asyncio
import sys
import signal
import logging

from dotenv import load_dotenv

# Load .env file before anything else
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

from config import AppConfig, ConfigurationError
from core.price_feed import PriceFeed
from dashboard import Dashboard, format_price


class App:
    """Main orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._stopped = asyncio.Event()

        self.feed = PriceFeed(config)
        self.feed.on_change(self._on_prices_changed)

        self.dashboard = None
        if config.dashboard.enabled:
            self.dashboard = Dashboard(
                self.feed,
                host=config.dashboard.host,
                port=config.dashboard.port,
            )

    async def start(self):
        """Start everything and run until stop() is called."""
        logger.info("=" * 60)
        logger.info("   LIVE QUOTE STREAM - STARTING")
        logger.info("=" * 60)

        if self.dashboard:
            await self.dashboard.start()

        await self.feed.start()
        logger.info("[BOOT] ✅ All systems go. Running...")

        await self._stopped.wait()

    async def stop(self):
        """Graceful shutdown."""
        if self._stopped.is_set():
            return

        logger.info("[SHUTDOWN] Stopping...")
        await self.feed.stop()
        if self.dashboard:
            await self.dashboard.stop()

        self._stopped.set()
        logger.info("[SHUTDOWN] Complete.")

    def _on_prices_changed(self):
        if not logger.isEnabledFor(logging.DEBUG):
            return
        line = "  ".join(
            f"{symbol}={format_price(quote.price)}" for symbol, quote in self.feed.snapshot()
        )
        logger.debug(f"[PRICES] {line}")


def apply_log_level(config: AppConfig):
    """Root logger level comes from config, not from the basicConfig default."""
    logging.getLogger().setLevel(config.log_level)


async def main():
    """Entry point."""
    config = AppConfig.from_env()

    if not config.exchange.api_token:
        logger.critical("FINNHUB_API_TOKEN must be set!")
        sys.exit(1)

    try:
        config.validate()
        apply_log_level(config)
        app = App(config)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    # Graceful shutdown handler
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(app.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received in main loop.")
        await app.stop()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await app.stop()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
