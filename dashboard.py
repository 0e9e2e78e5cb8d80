"""
Dashboard: Lightweight web server showing the live price table.
Uses aiohttp.web to serve JSON API + a plain HTML table.
Reads the feed snapshot on every request; it never writes to the store.
"""

from __future__ import annotations
import html
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from aiohttp import web
import logging

if TYPE_CHECKING:
    from core.price_feed import PriceFeed

logger = logging.getLogger(__name__)


def json_response(data, status=200):
    return web.Response(
        text=json.dumps(data),
        content_type="application/json",
        status=status,
    )


def format_price(price: float) -> str:
    """Four decimals, same as the table cells."""
    return f"{price:.4f}"


class Dashboard:
    """Web dashboard server."""

    def __init__(self, feed: "PriceFeed", host: str = "0.0.0.0", port: int = 8080):
        self.feed = feed
        self.host = host
        self.port = port
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_get("/", self._serve_html)
        self.app.router.add_get("/api/prices", self._api_prices)
        self.app.router.add_get("/api/status", self._api_status)

    async def start(self):
        """Start the dashboard web server."""
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"[DASHBOARD] Running on http://{self.host}:{self.port}")

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # ─── Routes ───

    async def _serve_html(self, request: web.Request) -> web.Response:
        """Render the price table."""
        rows = []
        for symbol, quote in self.feed.snapshot():
            rows.append(
                f"<tr><td>{html.escape(symbol)}</td>"
                f"<td style=\"text-align:right\">{format_price(quote.price)}</td></tr>"
            )

        state = html.escape(self.feed.state.value)
        page = (
            "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
            "<meta http-equiv=\"refresh\" content=\"2\">"
            "<title>Live Quotes</title></head><body>"
            f"<p>Connection: {state}</p>"
            "<table><thead><tr><th>Symbol</th><th>Price</th></tr></thead>"
            f"<tbody>{''.join(rows)}</tbody></table>"
            "</body></html>"
        )
        return web.Response(text=page, content_type="text/html")

    async def _api_prices(self, request: web.Request) -> web.Response:
        """Snapshot in instrument order."""
        prices = []
        for symbol, quote in self.feed.snapshot():
            prices.append({
                "symbol": symbol,
                "price": quote.price,
                "timestamp": quote.timestamp,
                "volume": quote.volume,
            })

        return json_response({
            "prices": prices,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _api_status(self, request: web.Request) -> web.Response:
        return json_response(self.feed.status())
