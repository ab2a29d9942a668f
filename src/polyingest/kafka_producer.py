"""
Kafka producer that publishes activity trades to a single topic.

Sends are fire-and-forget from the caller's point of view: produce()
returns as soon as the record is queued in the client's batch, and
delivery failures are only logged from the delivery callback.
"""

import functools
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from .errors import FeedConnectionError
from .models import ActivityTrade, TradeMessage

logger = logging.getLogger(__name__)


def partition_key_for(trade: ActivityTrade) -> Optional[bytes]:
    """Transaction hash bytes, so fills of one transaction share a partition; None otherwise."""
    return trade.partition_key


def _split_brokers(brokers: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(brokers, str):
        brokers = brokers.split(",")
    return [b.strip() for b in brokers if b and b.strip()]


class TradeProducer:
    """Asynchronous producer of TradeMessage records keyed by transaction hash."""

    def __init__(
        self,
        brokers: Union[str, Iterable[str]],
        topic: str,
        producer: Optional[AIOKafkaProducer] = None,
        client_id: str = "polyingest",
        linger_ms: int = 5,
    ):
        """
        Args:
            brokers: Comma-separated string or list of bootstrap servers
            topic: Destination topic for every trade
            producer: Pre-built client, mainly for tests
            client_id: Kafka client id
            linger_ms: Batching delay passed to the client
        """
        self.brokers = _split_brokers(brokers)
        self.topic = topic
        self.client_id = client_id
        self.linger_ms = linger_ms

        self._producer = producer
        self._started = False
        self._closed = False

        self.stats = {
            "trades_sent": 0,
            "trades_delivered": 0,
            "delivery_errors": 0,
            "send_errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    async def start(self) -> None:
        """
        Build and start the underlying client.

        Raises:
            FeedConnectionError: the client could not be created or could not
                reach any bootstrap broker
        """
        if self._started:
            return
        if not self.brokers:
            raise FeedConnectionError("No Kafka brokers configured")

        try:
            if self._producer is None:
                self._producer = AIOKafkaProducer(
                    bootstrap_servers=self.brokers,
                    client_id=self.client_id,
                    linger_ms=self.linger_ms,
                )
            await self._producer.start()
        except Exception as e:
            raise FeedConnectionError(f"Failed to create Kafka producer for {self.brokers}: {e}") from e

        self._started = True
        logger.info(f"Kafka producer started: brokers={','.join(self.brokers)}, topic={self.topic}")

    async def produce(self, trade: Optional[ActivityTrade]) -> bool:
        """
        Queue a trade for delivery.

        Returns:
            True if the record was queued (or trade was None), False if it
            could not be queued. Delivery outcome is only logged.
        """
        if trade is None:
            return True

        if not self.is_running:
            logger.warning("Kafka producer not running, dropping trade")
            return False

        value = TradeMessage.from_trade(trade).to_bytes()
        key = partition_key_for(trade)

        try:
            future = await self._producer.send(self.topic, value=value, key=key)
        except KafkaError as e:
            self.stats["send_errors"] += 1
            logger.error(f"Error producing trade to Kafka for id={trade.transaction_hash}: {e}")
            return False

        future.add_done_callback(functools.partial(self._on_delivery, trade.transaction_hash))
        self.stats["trades_sent"] += 1
        return True

    def _on_delivery(self, transaction_hash: str, future) -> None:
        if future.cancelled():
            self.stats["delivery_errors"] += 1
            logger.warning(f"Kafka delivery cancelled for id={transaction_hash}")
            return

        error = future.exception()
        if error is not None:
            self.stats["delivery_errors"] += 1
            logger.error(f"Kafka produce error for id={transaction_hash}: {error}")
        else:
            self.stats["trades_delivered"] += 1

    async def close(self) -> None:
        """Flush outstanding records and stop the client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        if self._producer is None or not self._started:
            return

        try:
            await self._producer.flush()
        except KafkaError as e:
            logger.error(f"Error flushing Kafka producer: {e}")

        try:
            await self._producer.stop()
        except KafkaError as e:
            logger.error(f"Error stopping Kafka producer: {e}")

        logger.info(
            f"Kafka producer closed: sent={self.stats['trades_sent']}, "
            f"delivered={self.stats['trades_delivered']}, errors={self.stats['delivery_errors']}"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "topic": self.topic, "running": self.is_running}
