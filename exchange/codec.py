"""
Message codec for the quote stream.
Turns raw WebSocket frames into envelopes. Pure, never raises on bad input.
"""

from __future__ import annotations
import json
import math
from typing import Any, List, Optional, Union

from exchange.models import OTHER, TRADE, InboundEnvelope, ParseFailure, PriceQuote

DecodeResult = Union[InboundEnvelope, ParseFailure]


class MessageCodec:
    """Decodes inbound frames and encodes outbound ones."""

    @staticmethod
    def encode_subscribe(symbol: str) -> str:
        return json.dumps({"type": "subscribe", "symbol": symbol}, separators=(",", ":"))

    def decode(self, raw: Any) -> DecodeResult:
        """
        Decode one frame.

        Text is parsed as-is, bytes are decoded as UTF-8 first. Anything that
        is not JSON of the expected shape comes back as ParseFailure.
        """
        if isinstance(raw, (bytes, bytearray, memoryview)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                return ParseFailure(f"invalid utf-8: {e}")
        elif not isinstance(raw, str):
            return ParseFailure(f"unsupported frame type: {type(raw).__name__}")

        try:
            data = json.loads(raw)
        except (ValueError, RecursionError):
            return ParseFailure(f"not json: {raw[:50]}")

        if not isinstance(data, dict):
            return ParseFailure("top-level value is not an object")

        msg_type = data.get("type")
        if not isinstance(msg_type, str):
            return ParseFailure("missing or non-string 'type'")

        if msg_type != TRADE:
            message = data.get("msg")
            return InboundEnvelope(
                kind=OTHER,
                type=msg_type,
                message=message if isinstance(message, str) else None,
            )

        items = data.get("data")
        if items is None:
            return InboundEnvelope(kind=TRADE, type=msg_type)
        if not isinstance(items, list):
            return ParseFailure("'data' is not an array")

        trades: List[PriceQuote] = []
        for item in items:
            quote = self._parse_trade(item)
            if isinstance(quote, ParseFailure):
                return quote
            trades.append(quote)

        return InboundEnvelope(kind=TRADE, trades=tuple(trades), type=msg_type)

    def _parse_trade(self, item: Any) -> Union[PriceQuote, ParseFailure]:
        if not isinstance(item, dict):
            return ParseFailure("trade item is not an object")

        symbol = item.get("s")
        price = item.get("p")
        if not isinstance(symbol, str):
            return ParseFailure("trade item has no string 's'")
        if not _is_number(price):
            return ParseFailure(f"trade item for {symbol} has no numeric 'p'")
        price = _to_float(price)
        if price is None or price < 0:
            return ParseFailure(f"invalid price for {symbol}: {price}")

        timestamp = _to_float(item.get("t"))
        volume = _to_float(item.get("v"))
        return PriceQuote(
            instrument=symbol,
            price=price,
            timestamp=int(timestamp) if timestamp is not None else None,
            volume=volume,
        )


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false is not a price
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_float(value: Any) -> Optional[float]:
    """Finite float, or None for non-numbers, NaN/inf and ints too large for a float."""
    if not _is_number(value):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None
