"""
Ingestion pipeline wiring.

Connects the WebSocket client to the frame classifier and fans each trade
out to the configured sinks. Frames are handled inline on the client's read
loop, so a slow sink slows down reading instead of growing a queue.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .config import Settings
from .kafka_producer import TradeProducer
from .models import ActivityTrade, Subscription
from .parser import parse_frame
from .polymarket_client import PING_INTERVAL, WS_URL, PolymarketWebSocketClient
from .questdb_writer import TradeWriter

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Central service that turns raw feed frames into sink writes."""

    def __init__(
        self,
        subscriptions: Iterable[Subscription],
        producer: Optional[TradeProducer] = None,
        writer: Optional[TradeWriter] = None,
        client: Optional[PolymarketWebSocketClient] = None,
        websocket_url: str = WS_URL,
        ping_interval: float = PING_INTERVAL,
        verbose: bool = False,
        progress_every: int = 100,
    ):
        self.producer = producer
        self.writer = writer
        self.progress_every = progress_every

        if client is None:
            client = PolymarketWebSocketClient(
                subscriptions,
                on_message=self.handle_frame,
                websocket_url=websocket_url,
                ping_interval=ping_interval,
                verbose=verbose,
            )
        else:
            client.on_message = self.handle_frame
        self.client = client

        self._closed = False
        self.stats = {
            "trades_processed": 0,
            "frames_skipped": 0,
            "parse_errors": 0,
            "sink_errors": 0,
            "last_trade_time": None,
            "started_at": None,
        }

    @classmethod
    async def from_settings(cls, settings: Settings) -> "IngestPipeline":
        """Build the pipeline and its sinks from configuration. Sinks are started by start()."""
        producer = None
        if settings.kafka_enabled:
            producer = TradeProducer(settings.kafka_brokers, settings.kafka_topic)

        writer = None
        if settings.questdb_enabled:
            if settings.questdb_protocol == "http":
                writer = await TradeWriter.http(settings.questdb_host, settings.questdb_http_port)
            else:
                writer = await TradeWriter.tcp(
                    settings.questdb_host,
                    settings.questdb_ilp_port,
                    flush_interval=settings.questdb_flush_interval,
                )

        return cls(
            settings.subscriptions(),
            producer=producer,
            writer=writer,
            websocket_url=settings.ws_url,
            ping_interval=settings.ping_interval,
            verbose=settings.verbose,
        )

    async def start(self) -> None:
        """Start sinks that need an explicit start."""
        if self.producer is not None:
            await self.producer.start()
        if self.writer is not None:
            self.writer.start()
        self.stats["started_at"] = datetime.now()

    async def run(self) -> None:
        """Run the feed until it is closed or fails. See PolymarketWebSocketClient.run."""
        await self.client.run()

    async def handle_frame(self, frame: bytes) -> None:
        """Client callback: classify one raw frame and forward trades."""
        result = parse_frame(frame)

        if result.is_skip:
            self.stats["frames_skipped"] += 1
            return

        if result.is_error:
            self.stats["parse_errors"] += 1
            logger.warning(f"Error parsing activity trade: {result.error}")
            return

        await self.process_trade(result.trade)

    async def process_trade(self, trade: ActivityTrade) -> None:
        """Send one trade to every sink. Sink failures are logged, never raised."""
        if self.producer is not None:
            try:
                if not await self.producer.produce(trade):
                    self.stats["sink_errors"] += 1
            except Exception as e:
                self.stats["sink_errors"] += 1
                logger.error(f"Error producing trade to Kafka for id={trade.transaction_hash}: {e}")

        if self.writer is not None:
            try:
                await self.writer.write(trade)
            except Exception as e:
                self.stats["sink_errors"] += 1
                logger.error(f"Error writing trade to QuestDB for id={trade.transaction_hash}: {e}")

        self.stats["trades_processed"] += 1
        self.stats["last_trade_time"] = datetime.now()

        count = self.stats["trades_processed"]
        if self.progress_every and count % self.progress_every == 0:
            logger.info(f"Processed trades: {count}")

    async def close(self) -> None:
        """Close the feed first so no new trades arrive, then each sink."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down ingestion pipeline...")

        try:
            await self.client.close()
        except Exception as e:
            logger.error(f"Error closing WebSocket client: {e}")

        if self.producer is not None:
            try:
                await self.producer.close()
            except Exception as e:
                logger.error(f"Error closing Kafka producer: {e}")

        if self.writer is not None:
            try:
                await self.writer.close()
            except Exception as e:
                logger.error(f"Error closing QuestDB writer: {e}")

        logger.info("Ingestion pipeline stopped")

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        for key in ("last_trade_time", "started_at"):
            if stats[key] is not None:
                stats[key] = stats[key].isoformat()
        stats["client"] = self.client.get_stats()
        if self.producer is not None:
            stats["kafka"] = self.producer.get_stats()
        if self.writer is not None:
            stats["questdb"] = self.writer.get_stats()
        return stats
