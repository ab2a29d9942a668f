"""
Batched QuestDB writer for activity trades (InfluxDB line protocol).

Rows are appended to the sender's in-memory buffer and only become durable
when the buffer is flushed, either by the background flush task (TCP) or by
the client's own auto-flush (HTTP). A single lock serializes writes, flushes
and close so the timer never flushes in the middle of a row or after close.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from questdb.ingress import IngressError, Sender, TimestampNanos

from .errors import FeedConnectionError, PolyIngestError, TradeWriteError
from .models import ActivityTrade

logger = logging.getLogger(__name__)

TABLE_NAME = "polymarket_trades"
DEFAULT_FLUSH_INTERVAL = 1.0


class TradeWriter:
    """Writes ActivityTrade rows to a QuestDB table through a line-protocol sender."""

    def __init__(
        self,
        sender: Sender,
        table_name: str = TABLE_NAME,
        flush_interval: Optional[float] = None,
    ):
        """
        Args:
            sender: An established questdb Sender
            table_name: Destination table
            flush_interval: Seconds between background flushes; None when the
                sender auto-flushes on its own
        """
        self._sender = sender
        self.table_name = table_name
        self.flush_interval = flush_interval

        self._lock = asyncio.Lock()
        self._done = asyncio.Event()
        self._flush_task: Optional[asyncio.Task] = None
        self._closing = False
        self._closed = False

        self.stats = {
            "rows_written": 0,
            "write_errors": 0,
            "flushes": 0,
            "flush_errors": 0,
        }

    @classmethod
    async def tcp(
        cls,
        host: str,
        port: int,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        table_name: str = TABLE_NAME,
    ) -> "TradeWriter":
        """Writer over ILP/TCP. TCP has no auto-flush, so a background task flushes every flush_interval."""
        conf = f"tcp::addr={host}:{port};auto_flush=off;"
        sender = await cls._open_sender(conf)
        writer = cls(sender, table_name=table_name, flush_interval=flush_interval)
        writer.start()
        return writer

    @classmethod
    async def http(
        cls,
        host: str,
        port: int,
        auto_flush_interval_ms: int = 1000,
        table_name: str = TABLE_NAME,
    ) -> "TradeWriter":
        """Writer over ILP/HTTP; the sender flushes itself every auto_flush_interval_ms."""
        conf = f"http::addr={host}:{port};auto_flush_interval={auto_flush_interval_ms};"
        sender = await cls._open_sender(conf)
        return cls(sender, table_name=table_name, flush_interval=None)

    @staticmethod
    async def _open_sender(conf: str) -> Sender:
        try:
            sender = Sender.from_conf(conf)
            await asyncio.to_thread(sender.establish)
        except IngressError as e:
            raise FeedConnectionError(f"Failed to connect to QuestDB ({conf}): {e}") from e
        logger.info(f"QuestDB sender established: {conf}")
        return sender

    def start(self) -> None:
        """Start the background flush task if this writer needs one."""
        if self.flush_interval is None or self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(self._flush_loop())
        logger.info(f"QuestDB background flush every {self.flush_interval}s")

    async def _flush_loop(self) -> None:
        while not self._done.is_set():
            try:
                await asyncio.wait_for(self._done.wait(), timeout=self.flush_interval)
                return
            except asyncio.TimeoutError:
                pass

            try:
                await self.flush()
            except Exception as e:
                logger.error(f"QuestDB flush error: {e}")

    def _append_row(self, trade: ActivityTrade) -> None:
        self._sender.row(
            self.table_name,
            symbols={
                "side": trade.side,
                "outcome": trade.outcome_title,
                "event_slug": trade.event_slug,
            },
            columns={
                "asset": trade.asset,
                "price": float(trade.price),
                "size": float(trade.size),
                "transaction_hash": trade.transaction_hash,
                "condition_id": trade.condition_id,
                "outcome_index": int(trade.outcome_index),
                "market_slug": trade.market_slug,
                "event_title": trade.event_title,
                "proxy_wallet": trade.proxy_wallet_address,
                "name": trade.name,
                "pseudonym": trade.pseudonym,
            },
            at=TimestampNanos(trade.timestamp * 1_000_000_000),
        )

    async def write(self, trade: ActivityTrade) -> None:
        """
        Buffer one trade row. Returning does not mean the row is durable.

        The row is appended off the event loop: with auto-flush enabled the
        sender may flush over the network from inside row().

        Raises:
            PolyIngestError: the writer is closed
            IngressError: the sender rejected the row
        """
        async with self._lock:
            if self._closed:
                raise PolyIngestError("QuestDB writer is closed")
            try:
                await asyncio.to_thread(self._append_row, trade)
            except IngressError:
                self.stats["write_errors"] += 1
                raise
            self.stats["rows_written"] += 1

    async def write_batch(self, trades: Iterable[ActivityTrade]) -> None:
        """
        Write trades in order, then flush once.

        Raises:
            TradeWriteError: on the first row that fails; later rows are not
                written and no flush is performed
        """
        for index, trade in enumerate(trades):
            try:
                await self.write(trade)
            except Exception as e:
                raise TradeWriteError(index, trade, e) from e
        await self.flush()

    async def flush(self) -> None:
        """
        Send all buffered rows.

        Raises:
            IngressError: the flush failed; the writer stays usable
        """
        async with self._lock:
            if self._closed:
                return
            await self._flush_locked()

    async def _flush_locked(self) -> None:
        try:
            await asyncio.to_thread(self._sender.flush)
        except Exception:
            self.stats["flush_errors"] += 1
            raise
        self.stats["flushes"] += 1

    async def close(self) -> None:
        """Stop the flush task, flush once more and release the sender."""
        if self._closing:
            return
        self._closing = True

        self._done.set()
        if self._flush_task is not None:
            await asyncio.gather(self._flush_task, return_exceptions=True)
            self._flush_task = None

        async with self._lock:
            try:
                await self._flush_locked()
            except Exception as e:
                logger.error(f"QuestDB final flush error: {e}")

            self._closed = True
            try:
                await asyncio.to_thread(self._sender.close, False)
            except Exception as e:
                logger.error(f"Error closing QuestDB sender: {e}")

        logger.info(
            f"QuestDB writer closed: rows={self.stats['rows_written']}, "
            f"flushes={self.stats['flushes']}, flush_errors={self.stats['flush_errors']}"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "table": self.table_name, "closed": self._closed}
