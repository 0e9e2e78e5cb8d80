"""
Price Store: Latest known price per instrument.

One entry per tracked instrument, created once at startup and kept in
registration order so renderers get a stable row order. Updates for
instruments outside the tracked set are dropped.

Listeners get a bare "store changed" call, not a diff. Updates applied in the
same event loop iteration share a single notification.
"""

from __future__ import annotations
import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging

from exchange.models import NO_PRICE, PriceQuote

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class PriceStore:
    """In-memory symbol -> PriceQuote map with change notification."""

    def __init__(self, instruments: Optional[Iterable[str]] = None):
        self._quotes: Dict[str, PriceQuote] = {}
        self._listeners: List[ChangeListener] = []
        self._initialized = False
        self._flush_pending = False
        self.last_updated: Optional[float] = None

        if instruments is not None:
            self.initialize(instruments)

    def initialize(self, instruments: Iterable[str]):
        """Create one sentinel entry per instrument. Allowed exactly once."""
        if self._initialized:
            raise RuntimeError("PriceStore is already initialized")

        for symbol in instruments:
            if symbol in self._quotes:
                raise ValueError(f"Duplicate instrument: {symbol}")
            self._quotes[symbol] = PriceQuote(instrument=symbol, price=NO_PRICE)

        self._initialized = True
        logger.info(f"[STORE] Tracking {len(self._quotes)} instruments")
        self._mark_changed()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def instruments(self) -> List[str]:
        return list(self._quotes)

    def __len__(self) -> int:
        return len(self._quotes)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._quotes

    def price(self, symbol: str) -> float:
        """Latest price, NO_PRICE if nothing arrived yet. KeyError if untracked."""
        return self._quotes[symbol].price

    def apply_trade(self, quote: PriceQuote) -> bool:
        """Overwrite the price for a tracked instrument. Returns False if untracked."""
        if quote.instrument not in self._quotes:
            return False

        self._quotes[quote.instrument] = quote
        self.last_updated = time.time()
        self._mark_changed()
        return True

    def snapshot(self) -> List[Tuple[str, PriceQuote]]:
        """Ordered (symbol, quote) pairs. A copy; safe to hold on to."""
        return list(self._quotes.items())

    # ==================== Change Notification ====================

    def on_change(self, listener: ChangeListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _mark_changed(self):
        if self._flush_pending:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (plain sync use): notify right away
            self._flush()
            return

        self._flush_pending = True
        loop.call_soon(self._flush)

    def _flush(self):
        self._flush_pending = False
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"[STORE] Change listener error: {e}", exc_info=True)
