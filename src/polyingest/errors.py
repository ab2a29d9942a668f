"""
Exception types for the Polymarket ingestion pipeline.
"""

from typing import Optional


class PolyIngestError(Exception):
    """Base class for ingestion pipeline errors."""
    pass


class FeedConnectionError(PolyIngestError, ConnectionError):
    """Dial, handshake, client construction or unrecoverable read failure."""
    pass


class ProtocolError(PolyIngestError):
    """Subscription serialization or control-frame write failure."""
    pass


class ParseError(PolyIngestError):
    """Malformed envelope or payload on an object-shaped frame."""

    def __init__(self, message: str, frame: Optional[bytes] = None):
        super().__init__(message)
        self.frame = frame


class TradeWriteError(PolyIngestError):
    """A row in a batch could not be written to the time-series store."""

    def __init__(self, index: int, trade, cause: Exception):
        super().__init__(
            f"Failed to write trade {index} "
            f"(tx={getattr(trade, 'transaction_hash', '')!r}): {cause}"
        )
        self.index = index
        self.trade = trade
        self.cause = cause


class SkipMessage(Exception):
    """Raised by the raising parser API for frames that are not trades.

    Not a failure: callers catch it and move on silently.
    """
    pass
