"""
Frame classifier for the Polymarket real-time data stream.

Runs on every inbound frame, most of which are not trades, so the cheap
checks (empty frame, non-object frame, topic/type mismatch) come before
any payload decoding.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import ValidationError

from .errors import ParseError, SkipMessage
from .models import (
    TOPIC_ACTIVITY,
    TYPE_TRADES,
    ActivityTrade,
    ClobUserOrder,
    ClobUserTrade,
    IncomingMessage,
)


class FrameKind(str, Enum):
    TRADE = "trade"
    SKIP = "skip"
    ERROR = "error"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of classifying one frame: a trade, a skip, or an error."""
    kind: FrameKind
    trade: Optional[ActivityTrade] = None
    error: Optional[ParseError] = None

    @property
    def is_trade(self) -> bool:
        return self.kind is FrameKind.TRADE

    @property
    def is_skip(self) -> bool:
        return self.kind is FrameKind.SKIP

    @property
    def is_error(self) -> bool:
        return self.kind is FrameKind.ERROR


SKIP = ParseResult(kind=FrameKind.SKIP)


def _as_bytes(frame: Union[bytes, bytearray, memoryview, str]) -> bytes:
    if isinstance(frame, str):
        return frame.encode("utf-8")
    return bytes(frame)


def parse_frame(frame: Union[bytes, bytearray, memoryview, str]) -> ParseResult:
    """
    Classify a raw frame.

    Args:
        frame: Raw frame exactly as received from the socket

    Returns:
        ParseResult tagged TRADE (with the decoded trade), SKIP for anything
        that is not an activity trade, or ERROR for an object-shaped frame
        that fails to decode.
    """
    data = _as_bytes(frame)
    if not data or data[:1] != b"{":
        return SKIP

    try:
        envelope = IncomingMessage.model_validate_json(data)
    except ValidationError as e:
        return ParseResult(
            kind=FrameKind.ERROR,
            error=ParseError(f"Failed to decode message envelope: {e}", frame=data),
        )

    if envelope.topic != TOPIC_ACTIVITY or envelope.type != TYPE_TRADES:
        return SKIP

    try:
        if isinstance(envelope.payload, str):
            trade = ActivityTrade.model_validate_json(envelope.payload)
        else:
            trade = ActivityTrade.model_validate(envelope.payload)
    except ValidationError as e:
        return ParseResult(
            kind=FrameKind.ERROR,
            error=ParseError(f"Failed to parse activity trade: {e}", frame=data),
        )

    return ParseResult(kind=FrameKind.TRADE, trade=trade)


def parse_activity_trade(frame: Union[bytes, bytearray, memoryview, str]) -> ActivityTrade:
    """
    Raising variant of parse_frame.

    Raises:
        SkipMessage: frame is not an activity trade
        ParseError: frame looked like a message but could not be decoded
    """
    result = parse_frame(frame)
    if result.is_skip:
        raise SkipMessage()
    if result.is_error:
        raise result.error
    return result.trade


def parse_clob_user_order(payload: Any) -> ClobUserOrder:
    """Decode an order update payload from the clob_user topic."""
    try:
        if isinstance(payload, (bytes, bytearray, str)):
            return ClobUserOrder.model_validate_json(payload)
        return ClobUserOrder.model_validate(payload)
    except ValidationError as e:
        raise ParseError(f"Failed to parse clob_user order: {e}") from e


def parse_clob_user_trade(payload: Any) -> ClobUserTrade:
    """Decode a trade update payload from the clob_user topic."""
    try:
        if isinstance(payload, (bytes, bytearray, str)):
            return ClobUserTrade.model_validate_json(payload)
        return ClobUserTrade.model_validate(payload)
    except ValidationError as e:
        raise ParseError(f"Failed to parse clob_user trade: {e}") from e
