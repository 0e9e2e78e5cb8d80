"""
Unit tests for StreamConnection.

The transport is an in-memory FakeSocket handed out by FakeConnector, so the
whole lifecycle (subscribe, stream, fail, reconnect, disconnect) runs without
a network.
"""

import asyncio
import json
import logging

import pytest
from websockets.exceptions import InvalidURI

from config import ConfigurationError
from core.price_store import PriceStore
from core.subscriptions import SubscriptionManager
from exchange.finnhub_ws import GOING_AWAY, StreamConnection
from exchange.models import ConnectionState
from tests.factories import FakeConnector, FakeSocket, TradeFrameFactory, wait_until

URL = "wss://ws.example.test?token=secret-token"

S = ConnectionState


def subscribed_symbols(socket):
    return [json.loads(payload)["symbol"] for payload in socket.sent]


class TestStreamConnection:
    """Tests for StreamConnection."""

    @pytest.fixture
    def store(self, symbols):
        return PriceStore(symbols)

    @pytest.fixture
    def make_connection(self, symbols, store):
        def _make(connector, reconnect_delay=0.01):
            connection = StreamConnection(
                url=URL,
                subscriptions=SubscriptionManager(symbols),
                store=store,
                reconnect_delay=reconnect_delay,
                connector=connector,
            )
            states = []
            connection.on_state_change(lambda old, new: states.append(new))
            connection.states = states
            return connection

        return _make

    @pytest.mark.asyncio
    async def test_initial_state(self, make_connection):
        connection = make_connection(FakeConnector())

        assert connection.state is S.DISCONNECTED
        assert not connection.is_streaming
        assert connection.frames_received == 0
        assert connection.reconnect_count == 0

    def test_invalid_url_fails_fast(self, symbols, store):
        with pytest.raises(ConfigurationError):
            StreamConnection("http://ws.example.test", SubscriptionManager(symbols), store)

    def test_negative_delay_fails_fast(self, symbols, store):
        with pytest.raises(ConfigurationError):
            StreamConnection(URL, SubscriptionManager(symbols), store, reconnect_delay=-1)

    def test_safe_url_hides_token(self, make_connection):
        connection = make_connection(FakeConnector())

        assert connection.safe_url == "wss://ws.example.test"
        assert "secret-token" not in connection.safe_url

    @pytest.mark.asyncio
    async def test_connect_subscribes_in_order_then_streams(self, make_connection, symbols):
        socket = FakeSocket()
        connector = FakeConnector(socket)
        connection = make_connection(connector)

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        assert connection.states == [S.CONNECTING, S.SUBSCRIBING, S.STREAMING]
        assert subscribed_symbols(socket) == symbols
        url, kwargs = connector.calls[0]
        assert url == URL
        assert kwargs == {"ping_interval": 20.0, "ping_timeout": 10.0, "close_timeout": 5.0}

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_trade_frames_update_store(self, make_connection, store):
        socket = FakeSocket([
            "ping",
            TradeFrameFactory.ping(),
            TradeFrameFactory.create("BINANCE:BTCUSDT", 65000.5),
            TradeFrameFactory.create_many({"OANDA:EUR_USD": 1.07, "UNKNOWN:SYM": 5.0}),
            TradeFrameFactory.create("BINANCE:BTCUSDT", 65001.0).encode("utf-8"),
        ])
        connection = make_connection(FakeConnector(socket))

        await connection.connect()
        await wait_until(lambda: connection.frames_received == 5)

        assert [(s, q.price) for s, q in store.snapshot()] == [
            ("BINANCE:BTCUSDT", 65001.0),
            ("OANDA:EUR_USD", 1.07),
            ("OANDA:GBP_USD", 0.0),
        ]
        assert connection.is_streaming

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_change_listener_notified(self, make_connection, store):
        socket = FakeSocket()
        connection = make_connection(FakeConnector(socket))
        changes = []
        store.on_change(lambda: changes.append(store.price("OANDA:GBP_USD")))

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)
        socket.push(TradeFrameFactory.create("OANDA:GBP_USD", 1.27))
        await wait_until(lambda: changes and changes[-1] == 1.27)

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_server_error_frame_logged(self, make_connection, caplog):
        socket = FakeSocket([TradeFrameFactory.error("Invalid symbol")])
        connection = make_connection(FakeConnector(socket))

        with caplog.at_level(logging.WARNING, logger="exchange.finnhub_ws"):
            await connection.connect()
            await wait_until(lambda: connection.frames_received == 1)

        assert "Invalid symbol" in caplog.text
        assert connection.is_streaming

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_subscribe_failure_does_not_abort(self, make_connection):
        socket = FakeSocket(send_errors={"OANDA:EUR_USD": ConnectionResetError("send failed")})
        connection = make_connection(FakeConnector(socket))

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        assert subscribed_symbols(socket) == ["BINANCE:BTCUSDT", "OANDA:GBP_USD"]

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_frames_do_not_reconnect(self, make_connection, store):
        """Bad payloads are dropped; the socket stays up."""
        huge = "9" * 400
        socket = FakeSocket([
            '{"type":"trade","data":[{"s":"BINANCE:BTCUSDT","p":' + huge + '}]}',
            '{"type":"trade","data":[{"s":"BINANCE:BTCUSDT","p":1.0,"t":' + huge + '}]}',
            "[" * 100000,
            TradeFrameFactory.create("OANDA:EUR_USD", 1.07),
        ])
        connector = FakeConnector(socket, FakeSocket())
        connection = make_connection(connector)

        await connection.connect()
        await wait_until(lambda: connection.frames_received == 4)

        assert S.RECONNECTING not in connection.states
        assert len(connector.calls) == 1
        assert socket.close_calls == []
        assert store.price("BINANCE:BTCUSDT") == 1.0
        assert store.price("OANDA:EUR_USD") == 1.07

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_waits_for_close_in_flight(self, make_connection):
        """Cancelling during the reconnect teardown still completes the close."""
        gate = asyncio.Event()
        first = FakeSocket([ConnectionResetError("gone")], close_gate=gate)
        connector = FakeConnector(first, FakeSocket())
        connection = make_connection(connector, reconnect_delay=30)

        await connection.connect()
        await wait_until(lambda: first.close_calls)
        assert connection.state is S.RECONNECTING

        stopping = asyncio.create_task(connection.disconnect())
        await asyncio.sleep(0.02)
        assert not stopping.done()
        assert not first.closed

        gate.set()
        await asyncio.wait_for(stopping, timeout=1)

        assert first.closed
        assert first.close_calls == [(GOING_AWAY, "going away")]
        assert connection.state is S.DISCONNECTED
        assert len(connector.calls) == 1

    @pytest.mark.asyncio
    async def test_read_failure_reconnects_and_resubscribes(self, make_connection, symbols):
        first = FakeSocket()
        second = FakeSocket()
        connector = FakeConnector(first, second)
        connection = make_connection(connector)

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)
        first.push(ConnectionResetError("connection reset by peer"))

        await wait_until(lambda: connection.is_streaming and len(connector.calls) == 2)

        assert connection.states == [
            S.CONNECTING, S.SUBSCRIBING, S.STREAMING,
            S.RECONNECTING,
            S.CONNECTING, S.SUBSCRIBING, S.STREAMING,
        ]
        assert first.close_calls == [(GOING_AWAY, "going away")]
        assert subscribed_symbols(first) == symbols
        assert subscribed_symbols(second) == symbols
        assert connector.calls[1][0] == URL
        assert connection.reconnect_count == 1

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_waits_for_delay(self, make_connection):
        first = FakeSocket([ConnectionResetError("gone")])
        connector = FakeConnector(first, FakeSocket())
        connection = make_connection(connector, reconnect_delay=0.2)

        await connection.connect()
        await wait_until(lambda: connection.state is S.RECONNECTING)
        await asyncio.sleep(0.05)

        assert len(connector.calls) == 1

        await wait_until(lambda: len(connector.calls) == 2)
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_connect_failure_is_retried(self, make_connection):
        socket = FakeSocket()
        connector = FakeConnector(OSError("network unreachable"), OSError("still down"), socket)
        connection = make_connection(connector)

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        assert len(connector.calls) == 3
        assert connection.reconnect_count == 2

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_invalid_uri_is_not_retried(self, make_connection):
        connector = FakeConnector(InvalidURI(URL, "bad uri"), FakeSocket())
        connection = make_connection(connector)

        await connection.connect()
        await wait_until(lambda: S.CONNECTING in connection.states
                         and connection.state is S.DISCONNECTED)
        await asyncio.sleep(0.05)

        assert len(connector.calls) == 1
        assert connection.state is S.DISCONNECTED

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_connect_twice_is_noop(self, make_connection):
        connector = FakeConnector(FakeSocket(), FakeSocket())
        connection = make_connection(connector)

        await connection.connect()
        await connection.connect()
        await wait_until(lambda: connection.is_streaming)
        await asyncio.sleep(0.02)

        assert len(connector.calls) == 1

        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_twice_tears_down_once(self, make_connection):
        socket = FakeSocket()
        connection = make_connection(FakeConnector(socket))

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        await connection.disconnect()
        await connection.disconnect()

        assert socket.close_calls == [(GOING_AWAY, "going away")]
        assert connection.state is S.DISCONNECTED
        assert connection.states.count(S.DISCONNECTED) == 1

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, make_connection):
        first = FakeSocket([ConnectionResetError("gone")])
        connector = FakeConnector(first, FakeSocket())
        connection = make_connection(connector, reconnect_delay=30)

        await connection.connect()
        await wait_until(lambda: connection.state is S.RECONNECTING)

        await asyncio.wait_for(connection.disconnect(), timeout=1)
        await asyncio.sleep(0.02)

        assert connection.state is S.DISCONNECTED
        assert len(connector.calls) == 1
        assert first.close_calls == [(GOING_AWAY, "going away")]

    @pytest.mark.asyncio
    async def test_disconnect_before_connect_is_noop(self, make_connection):
        connection = make_connection(FakeConnector())

        await connection.disconnect()

        assert connection.state is S.DISCONNECTED
        assert connection.states == []

    @pytest.mark.asyncio
    async def test_can_connect_again_after_disconnect(self, make_connection, symbols):
        first, second = FakeSocket(), FakeSocket()
        connection = make_connection(FakeConnector(first, second))

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)
        await connection.disconnect()

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        assert subscribed_symbols(second) == symbols

        await connection.disconnect()
        assert second.close_calls == [(GOING_AWAY, "going away")]

    @pytest.mark.asyncio
    async def test_state_listener_error_is_isolated(self, make_connection):
        connection = make_connection(FakeConnector(FakeSocket()))

        def broken(old, new):
            raise RuntimeError("listener blew up")

        connection.on_state_change(broken)

        await connection.connect()
        await wait_until(lambda: connection.is_streaming)

        await connection.disconnect()
        assert connection.state is S.DISCONNECTED
