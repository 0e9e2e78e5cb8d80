"""Shared fixtures for quote stream tests."""

import pytest

from config import AppConfig

SYMBOLS = ["BINANCE:BTCUSDT", "OANDA:EUR_USD", "OANDA:GBP_USD"]


@pytest.fixture
def symbols():
    return list(SYMBOLS)


@pytest.fixture
def app_config(symbols):
    config = AppConfig()
    config.exchange.api_token = "test-token"
    config.exchange.ws_url = "wss://ws.example.test"
    config.feed.symbols = symbols
    config.feed.reconnect_delay = 0.01
    config.dashboard.enabled = False
    return config
