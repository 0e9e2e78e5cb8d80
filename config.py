"""
Live Quote Stream: Configuration
All tunable parameters in one place.
"""

import os
from dataclasses import dataclass, field
from typing import List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


DEFAULT_SYMBOLS = [
    "BINANCE:BTCUSDT",
    "OANDA:EUR_USD",
    "OANDA:GBP_USD",
    "OANDA:USD_JPY",
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(ValueError):
    """Raised for configuration that can never lead to a working stream."""


def validate_ws_url(url: str) -> None:
    """Fail fast on anything that is not a ws:// or wss:// URL with a host."""
    parts = urlsplit(url or "")
    if parts.scheme not in ("ws", "wss"):
        raise ConfigurationError(
            f"WebSocket URL must use ws:// or wss://, got {url!r}"
        )
    if not parts.hostname:
        raise ConfigurationError(f"WebSocket URL has no host: {url!r}")


def validate_symbols(symbols: List[str]) -> None:
    if not symbols:
        raise ConfigurationError("At least one instrument must be configured")
    seen = set()
    for symbol in symbols:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ConfigurationError(f"Invalid instrument: {symbol!r}")
        if symbol in seen:
            raise ConfigurationError(f"Duplicate instrument: {symbol}")
        seen.add(symbol)


@dataclass
class ExchangeConfig:
    api_token: str = ""
    ws_url: str = "wss://ws.finnhub.io"

    @property
    def connection_url(self) -> str:
        """Base URL with the access token added as the `token` query parameter."""
        parts = urlsplit(self.ws_url)
        query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
        if self.api_token:
            query.append(("token", self.api_token))
        return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass
class FeedConfig:
    symbols: List[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    reconnect_delay: float = 5.0        # Fixed delay, unbounded retries
    ping_interval: float = 20.0         # Seconds between keepalive pings
    ping_timeout: float = 10.0
    close_timeout: float = 5.0


@dataclass
class DashboardConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.exchange.api_token = os.getenv("FINNHUB_API_TOKEN", "")
        config.exchange.ws_url = os.getenv("FINNHUB_WS_URL", config.exchange.ws_url)

        raw_symbols = os.getenv("FEED_SYMBOLS", "")
        if raw_symbols.strip():
            config.feed.symbols = [s.strip() for s in raw_symbols.split(",") if s.strip()]

        config.feed.reconnect_delay = _env_float("RECONNECT_DELAY", config.feed.reconnect_delay)
        config.feed.ping_interval = _env_float("WS_PING_INTERVAL", config.feed.ping_interval)
        config.dashboard.enabled = os.getenv("DASHBOARD_ENABLED", "true").lower() == "true"
        config.dashboard.port = int(_env_float("DASHBOARD_PORT", config.dashboard.port))
        config.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        return config

    def validate(self) -> None:
        """Raise ConfigurationError if the stream can never start."""
        validate_ws_url(self.exchange.ws_url)
        validate_symbols(self.feed.symbols)
        if self.feed.reconnect_delay < 0:
            raise ConfigurationError("RECONNECT_DELAY must not be negative")
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
