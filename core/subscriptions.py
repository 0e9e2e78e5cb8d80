"""
Subscription Manager: The fixed, ordered set of instruments to stream.
Builds subscribe frames fresh for every (re)connect.
"""

from __future__ import annotations
from typing import Iterable, List, Tuple

from config import validate_symbols
from exchange.codec import MessageCodec


class SubscriptionManager:
    """Tracks which instruments the client wants streamed."""

    def __init__(self, symbols: Iterable[str]):
        symbols = list(symbols)
        validate_symbols(symbols)
        self._symbols: Tuple[str, ...] = tuple(symbols)

    @property
    def symbols(self) -> Tuple[str, ...]:
        return self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._symbols

    def subscribe_frames(self) -> List[Tuple[str, str]]:
        """
        (symbol, payload) for every instrument, in configured order.
        The server does not keep subscriptions across connections, so this is
        called on each connect.
        """
        return [(symbol, MessageCodec.encode_subscribe(symbol)) for symbol in self._symbols]
