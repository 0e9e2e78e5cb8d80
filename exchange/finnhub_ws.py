"""
Finnhub WebSocket Stream.
Owns the socket lifecycle: connect, subscribe, receive loop, teardown.
Auto-reconnects after a fixed delay on any transport failure.
"""

from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlsplit, urlunsplit
import websockets
from websockets.exceptions import InvalidURI, WebSocketException
import logging

from config import ConfigurationError, validate_ws_url
from core.price_store import PriceStore
from core.subscriptions import SubscriptionManager
from exchange.codec import MessageCodec
from exchange.models import ConnectionState, ParseFailure

logger = logging.getLogger(__name__)

GOING_AWAY = 1001

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

# Called with (old_state, new_state)
StateListener = Callable[[ConnectionState, ConnectionState], None]
# websockets.connect or anything awaitable with the same call shape
Connector = Callable[..., Awaitable[Any]]


class StreamConnection:
    """
    Single streaming connection to the quote endpoint.

    DISCONNECTED -> CONNECTING -> SUBSCRIBING -> STREAMING
    STREAMING -> RECONNECTING (read failure) -> CONNECTING after `reconnect_delay`
    disconnect() moves to DISCONNECTED from anywhere.
    """

    def __init__(
        self,
        url: str,
        subscriptions: SubscriptionManager,
        store: PriceStore,
        codec: Optional[MessageCodec] = None,
        reconnect_delay: float = 5.0,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 10.0,
        close_timeout: Optional[float] = 5.0,
        connector: Optional[Connector] = None,
    ):
        validate_ws_url(url)
        if reconnect_delay < 0:
            raise ConfigurationError("reconnect_delay must not be negative")

        self.url = url
        self.subscriptions = subscriptions
        self.store = store
        self.codec = codec or MessageCodec()
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.close_timeout = close_timeout
        self._connector: Connector = connector or websockets.connect

        self._ws: Optional[Any] = None
        self._close_task: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: List[StateListener] = []

        self.frames_received = 0
        self.reconnect_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state is ConnectionState.STREAMING

    @property
    def safe_url(self) -> str:
        """Endpoint without the query string, so the token never hits the logs."""
        parts = urlsplit(self.url)
        return urlunsplit(parts._replace(query=""))

    def on_state_change(self, listener: StateListener):
        self._state_listeners.append(listener)

    async def connect(self):
        """Start streaming in the background. No-op while already running."""
        if self._task is not None and not self._task.done():
            return

        self._running = True
        self._task = asyncio.create_task(self._run())

    async def disconnect(self):
        """Stop streaming, cancel any pending reconnect, close the socket. Idempotent."""
        if (
            not self._running
            and self._task is None
            and self._ws is None
            and self._close_task is None
        ):
            self._set_state(ConnectionState.DISCONNECTED)
            return

        logger.info("[WS] Disconnecting...")
        self._running = False

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)

    # ==================== Internal Connection Management ====================

    async def _run(self):
        """Connect, subscribe, stream; on failure wait and start over."""
        while self._running:
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connector(
                    self.url,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout,
                    close_timeout=self.close_timeout,
                )
            except InvalidURI as e:
                logger.error(f"[WS] Invalid endpoint {self.safe_url}: {e}. Not retrying.")
                self._running = False
                self._set_state(ConnectionState.DISCONNECTED)
                return
            except TRANSPORT_ERRORS as e:
                logger.warning(
                    f"[WS] Connect failed: {e}. Reconnecting in {self.reconnect_delay}s..."
                )
            except Exception as e:
                logger.error(
                    f"[WS] Connect error: {e}. Reconnecting in {self.reconnect_delay}s...",
                    exc_info=True,
                )
            else:
                self._ws = ws
                logger.info(f"[WS] Connected to {self.safe_url}")
                await self._stream(ws)

            if not self._running:
                break

            self._set_state(ConnectionState.RECONNECTING)
            await self._teardown()
            self.reconnect_count += 1
            await asyncio.sleep(self.reconnect_delay)
            logger.info("[WS] Reconnecting...")

    async def _stream(self, ws):
        """Subscribe and run the receive loop until the socket fails."""
        try:
            self._set_state(ConnectionState.SUBSCRIBING)
            await self._subscribe(ws)

            self._set_state(ConnectionState.STREAMING)
            while self._running:
                frame = await ws.recv()
                self._handle_frame(frame)

        except TRANSPORT_ERRORS as e:
            logger.warning(
                f"[WS] Connection lost: {e}. Reconnecting in {self.reconnect_delay}s..."
            )
        except Exception as e:
            logger.error(
                f"[WS] Stream error: {e}. Reconnecting in {self.reconnect_delay}s...",
                exc_info=True,
            )

    async def _subscribe(self, ws):
        """Send one subscribe frame per instrument. No ack is awaited."""
        for symbol, payload in self.subscriptions.subscribe_frames():
            try:
                await ws.send(payload)
                logger.info(f"[WS] Subscribed: {symbol}")
            except TRANSPORT_ERRORS as e:
                logger.warning(f"[WS] Subscribe failed ({symbol}): {e}")

    def _handle_frame(self, frame):
        self.frames_received += 1

        result = self.codec.decode(frame)
        if isinstance(result, ParseFailure):
            # Heartbeats are not JSON; this is routine
            logger.debug(f"[WS] Dropped frame: {result.reason}")
            return

        if result.is_trade:
            for quote in result.trades:
                self.store.apply_trade(quote)
        elif result.type == "error":
            logger.warning(f"[WS] Server error: {result.message}")

    async def _teardown(self):
        """
        Close the current socket with 'going away'. Safe to call with no socket.
        The close runs as its own task so cancelling the caller cannot cut it
        short; a later call waits for a close still in flight.
        """
        ws, self._ws = self._ws, None
        if ws is not None:
            self._close_task = asyncio.create_task(self._close(ws))

        task = self._close_task
        if task is None:
            return

        await asyncio.shield(task)
        if self._close_task is task:
            self._close_task = None

    async def _close(self, ws):
        try:
            await ws.close(code=GOING_AWAY, reason="going away")
            logger.info("[WS] Socket closed")
        except Exception as e:
            logger.debug(f"[WS] Error while closing socket: {e}")

    def _set_state(self, new_state: ConnectionState):
        old_state = self._state
        if old_state is new_state:
            return

        self._state = new_state
        logger.debug(f"[WS] {old_state.value} -> {new_state.value}")
        for listener in list(self._state_listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"[WS] State listener error: {e}", exc_info=True)
