"""
Price Feed: Wires subscriptions, store and stream connection together.
This is what a view talks to: start() when ready, stop() on teardown,
snapshot() to render, on_change() to know when to re-render.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import logging

from config import AppConfig
from core.price_store import ChangeListener, PriceStore
from core.subscriptions import SubscriptionManager
from exchange.finnhub_ws import Connector, StreamConnection
from exchange.models import ConnectionState, PriceQuote

logger = logging.getLogger(__name__)


class PriceFeed:
    """Live prices for a fixed instrument list."""

    def __init__(self, config: AppConfig, connector: Optional[Connector] = None):
        config.validate()
        self.config = config

        self.subscriptions = SubscriptionManager(config.feed.symbols)
        self.store = PriceStore(self.subscriptions.symbols)
        self.connection = StreamConnection(
            url=config.exchange.connection_url,
            subscriptions=self.subscriptions,
            store=self.store,
            reconnect_delay=config.feed.reconnect_delay,
            ping_interval=config.feed.ping_interval,
            ping_timeout=config.feed.ping_timeout,
            close_timeout=config.feed.close_timeout,
            connector=connector,
        )

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def start(self):
        logger.info(f"[FEED] Starting feed for {len(self.subscriptions)} instruments")
        await self.connection.connect()

    async def stop(self):
        logger.info("[FEED] Stopping feed")
        await self.connection.disconnect()

    def snapshot(self) -> List[Tuple[str, PriceQuote]]:
        return self.store.snapshot()

    def on_change(self, listener: ChangeListener):
        self.store.on_change(listener)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.connection.state.value,
            "endpoint": self.connection.safe_url,
            "instruments": len(self.store),
            "frames_received": self.connection.frames_received,
            "reconnect_count": self.connection.reconnect_count,
            "last_updated": self.store.last_updated,
        }
