"""
Data models for the live quote stream.
Prices are plain floats; 0.0 means no tick has arrived yet.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


NO_PRICE = 0.0

TRADE = "trade"
OTHER = "other"


class ConnectionState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    SUBSCRIBING = "SUBSCRIBING"
    STREAMING = "STREAMING"
    RECONNECTING = "RECONNECTING"


@dataclass(frozen=True)
class PriceQuote:
    """Latest known price for one instrument."""
    instrument: str
    price: float = NO_PRICE
    timestamp: Optional[int] = None     # Unix ms, when the feed reports it
    volume: Optional[float] = None


@dataclass(frozen=True)
class InboundEnvelope:
    """
    Decoded inbound frame.
    kind is "trade" (quotes in `trades`) or "other" (pings, errors, anything else).
    """
    kind: str
    trades: Tuple[PriceQuote, ...] = ()
    type: str = ""                      # Raw wire `type`
    message: Optional[str] = None       # `msg` of server error frames

    @property
    def is_trade(self) -> bool:
        return self.kind == TRADE


@dataclass(frozen=True)
class ParseFailure:
    """A frame that could not be decoded. Expected for heartbeats, never raised."""
    reason: str
