"""Test doubles and data factories for the quote stream.

Usage:
    from tests.factories import FakeSocket, FakeConnector, TradeFrameFactory

    socket = FakeSocket([TradeFrameFactory.create(symbol="BINANCE:BTCUSDT")])
    connector = FakeConnector(socket)
"""

from .frame_factory import TradeFrameFactory
from .socket_factory import FakeConnector, FakeSocket, wait_until

__all__ = ["FakeConnector", "FakeSocket", "TradeFrameFactory", "wait_until"]
