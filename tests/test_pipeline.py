"""
Tests for the ingestion pipeline.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from polyingest.config import Settings
from polyingest.kafka_producer import TradeProducer
from polyingest.models import activity_trades_subscription
from polyingest.pipeline import IngestPipeline
from polyingest.polymarket_client import PolymarketWebSocketClient


@pytest.fixture
def mock_producer():
    producer = MagicMock(spec=TradeProducer)
    producer.start = AsyncMock()
    producer.produce = AsyncMock(return_value=True)
    producer.close = AsyncMock()
    producer.get_stats.return_value = {"trades_sent": 0}
    return producer


@pytest.fixture
def mock_writer():
    writer = MagicMock()
    writer.write = AsyncMock()
    writer.close = AsyncMock()
    writer.get_stats.return_value = {"rows_written": 0}
    return writer


@pytest.fixture
def pipeline(mock_producer, mock_writer):
    return IngestPipeline([activity_trades_subscription()], producer=mock_producer, writer=mock_writer)


class TestHandleFrame:
    """Test routing of classified frames."""

    @pytest.mark.asyncio
    async def test_trade_sent_to_both_sinks(self, pipeline, mock_producer, mock_writer, trade_frame):
        await pipeline.handle_frame(trade_frame)

        trade = mock_producer.produce.await_args.args[0]
        assert trade.side == "BUY"
        assert trade.transaction_hash == "0xabc"
        mock_writer.write.assert_awaited_once_with(trade)
        assert pipeline.stats["trades_processed"] == 1
        assert pipeline.stats["last_trade_time"] is not None

    @pytest.mark.asyncio
    async def test_skipped_frame_not_forwarded(self, pipeline, mock_producer, mock_writer):
        await pipeline.handle_frame(b'{"topic":"comments","type":"comment_created","payload":{}}')

        mock_producer.produce.assert_not_awaited()
        mock_writer.write.assert_not_awaited()
        assert pipeline.stats["frames_skipped"] == 1

    @pytest.mark.asyncio
    async def test_parse_error_logged(self, pipeline, mock_producer, caplog):
        with caplog.at_level(logging.WARNING, logger="polyingest.pipeline"):
            await pipeline.handle_frame(b'{"topic":"activity","type":"trades","payload":{"price":"abc"}}')

        mock_producer.produce.assert_not_awaited()
        assert pipeline.stats["parse_errors"] == 1
        assert "Error parsing activity trade" in caplog.text

    @pytest.mark.asyncio
    async def test_sink_failure_contained(self, pipeline, mock_producer, mock_writer, sample_trade):
        mock_writer.write.side_effect = RuntimeError("questdb down")

        await pipeline.process_trade(sample_trade)
        await pipeline.process_trade(sample_trade)

        assert mock_producer.produce.await_count == 2
        assert pipeline.stats["sink_errors"] == 2
        assert pipeline.stats["trades_processed"] == 2

    @pytest.mark.asyncio
    async def test_rejected_produce_counted(self, pipeline, mock_producer, mock_writer, sample_trade):
        mock_producer.produce.return_value = False

        await pipeline.process_trade(sample_trade)

        assert pipeline.stats["sink_errors"] == 1
        mock_writer.write.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_sinks(self, sample_trade):
        pipeline = IngestPipeline([activity_trades_subscription()])
        await pipeline.process_trade(sample_trade)
        assert pipeline.stats["trades_processed"] == 1

    @pytest.mark.asyncio
    async def test_progress_logged(self, mock_producer, sample_trade, caplog):
        pipeline = IngestPipeline([activity_trades_subscription()], producer=mock_producer, progress_every=2)

        with caplog.at_level(logging.INFO, logger="polyingest.pipeline"):
            for _ in range(4):
                await pipeline.process_trade(sample_trade)

        assert "Processed trades: 2" in caplog.text
        assert "Processed trades: 4" in caplog.text
        assert "Processed trades: 3" not in caplog.text


class TestLifecycle:
    """Test start/run/close wiring."""

    def test_injected_client_gets_callback(self, mock_producer):
        client = MagicMock()
        pipeline = IngestPipeline([], producer=mock_producer, client=client)
        assert client.on_message == pipeline.handle_frame

    @pytest.mark.asyncio
    async def test_start_starts_sinks(self, pipeline, mock_producer, mock_writer):
        await pipeline.start()

        mock_producer.start.assert_awaited_once()
        mock_writer.start.assert_called_once()
        assert pipeline.stats["started_at"] is not None

    @pytest.mark.asyncio
    async def test_close_order_and_idempotence(self, mock_producer, mock_writer):
        order = []
        client = MagicMock()
        client.close = AsyncMock(side_effect=lambda: order.append("client"))
        mock_producer.close.side_effect = lambda: order.append("producer")
        mock_writer.close.side_effect = lambda: order.append("writer")
        pipeline = IngestPipeline([], producer=mock_producer, writer=mock_writer, client=client)

        await pipeline.close()
        await pipeline.close()

        assert order == ["client", "producer", "writer"]

    @pytest.mark.asyncio
    async def test_close_continues_after_sink_error(self, pipeline, mock_producer, mock_writer):
        mock_producer.close.side_effect = RuntimeError("broker gone")

        await pipeline.close()

        mock_writer.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_stats(self, pipeline):
        await pipeline.start()
        stats = pipeline.get_stats()

        assert isinstance(stats["started_at"], str)
        assert stats["client"]["state"] == "idle"
        assert stats["kafka"] == {"trades_sent": 0}
        assert stats["questdb"] == {"rows_written": 0}

    @pytest.mark.asyncio
    async def test_feed_to_kafka(self, trade_frame):
        """A trade frame read from the socket ends up as a keyed Kafka record."""
        kafka = MagicMock()
        kafka.start = AsyncMock()
        kafka.stop = AsyncMock()
        kafka.flush = AsyncMock()
        kafka.send = AsyncMock(return_value=MagicMock())
        producer = TradeProducer("localhost:19092", "polymarket-trades", producer=kafka)

        websocket = AsyncMock()
        websocket.recv.side_effect = [
            "pong",
            '{"topic":"comments","type":"comment_created","payload":{}}',
            trade_frame.decode("utf-8"),
            ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True),
        ]

        pipeline = IngestPipeline([activity_trades_subscription()], producer=producer, ping_interval=10)
        await pipeline.start()
        with patch("websockets.connect", new=AsyncMock(return_value=websocket)):
            await pipeline.run()
        await pipeline.close()

        kafka.send.assert_awaited_once()
        call = kafka.send.await_args
        assert call.args[0] == "polymarket-trades"
        assert call.kwargs["key"] == b"0xabc"
        assert pipeline.stats["frames_skipped"] == 1
        assert pipeline.stats["trades_processed"] == 1
        kafka.stop.assert_awaited_once()


class TestFromSettings:
    """Test building the pipeline from configuration."""

    @pytest.mark.asyncio
    async def test_kafka_only(self):
        settings = Settings(kafka_brokers="broker-1:9092,broker-2:9092", kafka_topic="trades")

        pipeline = await IngestPipeline.from_settings(settings)

        assert pipeline.producer.brokers == ["broker-1:9092", "broker-2:9092"]
        assert pipeline.producer.topic == "trades"
        assert pipeline.writer is None
        assert isinstance(pipeline.client, PolymarketWebSocketClient)
        assert pipeline.client.subscriptions == [activity_trades_subscription()]

    @pytest.mark.asyncio
    async def test_questdb_tcp(self):
        settings = Settings(kafka_enabled=False, questdb_enabled=True, questdb_host="questdb")

        with patch("polyingest.pipeline.TradeWriter.tcp", new=AsyncMock()) as mock_tcp:
            pipeline = await IngestPipeline.from_settings(settings)

        mock_tcp.assert_awaited_once_with("questdb", 9009, flush_interval=1.0)
        assert pipeline.producer is None
        assert pipeline.writer is mock_tcp.return_value

    @pytest.mark.asyncio
    async def test_questdb_http(self):
        settings = Settings(kafka_enabled=False, questdb_enabled=True, questdb_protocol="http")

        with patch("polyingest.pipeline.TradeWriter.http", new=AsyncMock()) as mock_http:
            await IngestPipeline.from_settings(settings)

        mock_http.assert_awaited_once_with("localhost", 9000)

    @pytest.mark.asyncio
    async def test_clob_user_subscription(self):
        settings = Settings(
            kafka_enabled=False,
            polymarket_api_key="key",
            polymarket_secret="secret",
            polymarket_passphrase="pass",
        )

        pipeline = await IngestPipeline.from_settings(settings)

        topics = [s.topic for s in pipeline.client.subscriptions]
        assert topics == ["activity", "clob_user"]
