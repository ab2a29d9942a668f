"""
Pydantic models for Polymarket real-time data stream messages and internal data structures.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# Topics
TOPIC_ACTIVITY = "activity"
TOPIC_COMMENTS = "comments"
TOPIC_CLOB_USER = "clob_user"

# Message types
TYPE_TRADES = "trades"
TYPE_ORDERS = "orders"
TYPE_ALL = "*"

# Trade sides
SIDE_BUY = "BUY"
SIDE_SELL = "SELL"

# clob_user trade statuses
TRADE_STATUS_MATCHED = "MATCHED"
TRADE_STATUS_MINED = "MINED"
TRADE_STATUS_CONFIRMED = "CONFIRMED"
TRADE_STATUS_RETRYING = "RETRYING"
TRADE_STATUS_FAILED = "FAILED"

# clob_user order update types
ORDER_TYPE_PLACEMENT = "PLACEMENT"
ORDER_TYPE_UPDATE = "UPDATE"
ORDER_TYPE_CANCELLATION = "CANCELLATION"


class ConnectionState(str, Enum):
    """Lifecycle of a single WebSocket session. CLOSED is terminal."""
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


class ClobAuth(BaseModel):
    """API credentials attached to authenticated (clob_user) subscriptions."""
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="CLOB API key")
    secret: str = Field(..., description="CLOB API secret")
    passphrase: str = Field(..., description="CLOB API passphrase")


class Subscription(BaseModel):
    """A single topic subscription intent."""
    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., description="Feed topic, e.g. 'activity'")
    type: str = Field(..., description="Message type within the topic, or '*'")
    clob_auth: Optional[ClobAuth] = Field(None, description="Credentials for private topics")
    filters: Optional[str] = Field(None, description="Optional server-side filter expression")

    @field_validator("filters")
    @classmethod
    def empty_filters_to_none(cls, v):
        """An empty filter expression is omitted from the wire, same as no filter."""
        return v or None


class SubscriptionMessage(BaseModel):
    """Control frame sent to subscribe or unsubscribe a set of topics."""
    action: Literal["subscribe", "unsubscribe"]
    subscriptions: List[Subscription] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


def activity_trades_subscription() -> Subscription:
    """Public subscription to executed trades on the activity topic."""
    return Subscription(topic=TOPIC_ACTIVITY, type=TYPE_TRADES)


def activity_all_subscription() -> Subscription:
    return Subscription(topic=TOPIC_ACTIVITY, type=TYPE_ALL)


def comments_subscription() -> Subscription:
    return Subscription(topic=TOPIC_COMMENTS, type=TYPE_ALL)


def clob_user_subscription(key: str, secret: str, passphrase: str) -> Subscription:
    """Authenticated subscription to the caller's own orders and trades."""
    return Subscription(
        topic=TOPIC_CLOB_USER,
        type=TYPE_ALL,
        clob_auth=ClobAuth(key=key, secret=secret, passphrase=passphrase),
    )


class IncomingMessage(BaseModel):
    """Envelope wrapping every feed message.

    Only ``topic`` and ``type`` are inspected before deciding whether
    ``payload`` is worth decoding into a typed model. The other metadata is
    kept as sent and never fails decoding.
    """
    topic: str = ""
    type: str = ""
    timestamp: Any = None
    connection_id: Any = None
    payload: Any = None

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        """Treat explicit nulls as absent so defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class ActivityTrade(BaseModel):
    """A single executed trade from the activity/trades stream.

    String fields default to "" and numeric fields to 0 when the feed omits
    them (or sends null). Values are stored as received. Instances are
    immutable once built.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    # Identifiers
    id: str = Field(default="", description="Trade identifier")
    market: str = Field(default="", description="Market identifier")
    asset: str = Field(default="", description="Outcome token asset id")
    condition_id: str = Field(default="", alias="conditionId")
    question_id: str = Field(default="", alias="questionId")
    transaction_hash: str = Field(default="", alias="transactionHash")
    maker: str = ""
    taker: str = ""
    maker_order_id: str = Field(default="", alias="makerOrderId")
    taker_order_id: str = Field(default="", alias="takerOrderId")

    # Classification
    side: str = Field(default="", description="BUY or SELL, as sent by the feed")
    outcome_title: str = Field(
        default="",
        validation_alias=AliasChoices("outcomeTitle", "outcome", "outcome_title"),
        serialization_alias="outcomeTitle",
    )
    outcome_index: int = Field(default=0, alias="outcomeIndex")

    # Economics
    price: float = Field(default=0.0, description="Execution price as a probability (0.00-1.00)")
    size: float = Field(default=0.0, description="Number of outcome shares traded")
    fee: float = Field(default=0.0, description="Fee charged on the fill")

    # Provenance
    market_slug: str = Field(
        default="",
        validation_alias=AliasChoices("marketSlug", "slug", "market_slug"),
        serialization_alias="marketSlug",
    )
    event_slug: str = Field(default="", alias="eventSlug")
    event_title: str = Field(
        default="",
        validation_alias=AliasChoices("eventTitle", "title", "event_title"),
        serialization_alias="eventTitle",
    )
    proxy_wallet_address: str = Field(
        default="",
        validation_alias=AliasChoices("proxyWalletAddress", "proxyWallet", "proxy_wallet_address"),
        serialization_alias="proxyWalletAddress",
    )
    name: str = ""
    pseudonym: str = ""

    timestamp: int = Field(default=0, description="Trade time in epoch seconds")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        """Treat explicit nulls as absent so defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @property
    def event_time(self) -> datetime:
        """Trade timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def partition_key(self) -> Optional[bytes]:
        """Broker partition key: the transaction hash, or None when absent."""
        if self.transaction_hash:
            return self.transaction_hash.encode("utf-8")
        return None


class TradeMessage(BaseModel):
    """Flat, JSON-friendly message published to the broker topic."""
    model_config = ConfigDict(populate_by_name=True)

    side: str = ""
    outcome: str = ""
    event_slug: str = Field(default="", alias="eventSlug")
    slug: str = ""
    condition_id: str = Field(default="", alias="conditionId")
    transaction_hash: str = Field(default="", alias="transactionHash")
    proxy_wallet: str = Field(default="", alias="proxyWallet")
    question_id: str = Field(default="", alias="questionId")
    price: float = 0.0
    size: float = 0.0
    fee: float = 0.0
    timestamp: int = 0

    @classmethod
    def from_trade(cls, trade: ActivityTrade) -> "TradeMessage":
        return cls(
            side=trade.side,
            outcome=trade.outcome_title,
            event_slug=trade.event_slug,
            slug=trade.market_slug,
            condition_id=trade.condition_id,
            transaction_hash=trade.transaction_hash,
            proxy_wallet=trade.proxy_wallet_address,
            question_id=trade.question_id,
            price=trade.price,
            size=trade.size,
            fee=trade.fee,
            timestamp=trade.timestamp,
        )

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class MakerOrder(BaseModel):
    """A maker order matched as part of a clob_user trade."""
    asset_id: str = ""
    matched_amount: str = ""
    order_id: str = ""
    outcome: str = ""
    owner: str = ""
    price: str = ""


class ClobUserOrder(BaseModel):
    """Order update (placement, update, cancellation) from the clob_user topic."""
    id: str = ""
    market: str = ""
    asset_id: str = ""
    side: str = ""
    price: str = ""
    original_size: str = ""
    size_matched: str = ""
    type: str = Field(default="", description="PLACEMENT, UPDATE or CANCELLATION")
    outcome: str = ""
    owner: str = ""
    timestamp: str = ""
    associate_trades: List[str] = Field(default_factory=list)


class ClobUserTrade(BaseModel):
    """Trade update from the clob_user topic."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    market: str = ""
    asset_id: str = ""
    side: str = ""
    price: str = ""
    size: str = ""
    status: str = Field(default="", description="MATCHED, MINED, CONFIRMED, RETRYING or FAILED")
    outcome: str = ""
    owner: str = ""
    taker_order_id: str = ""
    timestamp: str = ""
    match_time: str = Field(default="", alias="matchtime")
    last_update: str = ""
    maker_orders: List[MakerOrder] = Field(default_factory=list)
