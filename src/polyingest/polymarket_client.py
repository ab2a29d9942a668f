"""
Polymarket real-time data stream WebSocket client.

One instance owns exactly one connection for its whole life: connect,
subscribe, keepalive, read until closed. There is no reconnect; callers
that want another session build a new client and run it again.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from .errors import FeedConnectionError, ProtocolError
from .models import ConnectionState, Subscription, SubscriptionMessage

logger = logging.getLogger(__name__)

WS_URL = "wss://ws-live-data.polymarket.com"
PING_INTERVAL = 5.0
PING_MESSAGE = "ping"
PONG_MESSAGE = "pong"

MessageCallback = Callable[[bytes], Union[None, Awaitable[None]]]


class PolymarketWebSocketClient:
    """
    WebSocket client for the Polymarket real-time data stream.

    Features:
    - Subscribe/unsubscribe control frames
    - Plain-text "ping" keepalive on a fixed interval
    - Raw frames forwarded in receipt order to a single callback, which is
      awaited before the next read
    - Idempotent close that is safe before connect and from any task
    """

    def __init__(
        self,
        subscriptions: Iterable[Subscription],
        on_message: Optional[MessageCallback] = None,
        websocket_url: str = WS_URL,
        ping_interval: float = PING_INTERVAL,
        read_timeout: Optional[float] = None,
        close_timeout: float = 5.0,
        verbose: bool = False,
    ):
        """
        Initialize the client.

        Args:
            subscriptions: Subscriptions sent right after connecting
            on_message: Callback (sync or async) receiving each raw frame as bytes
            websocket_url: Feed endpoint
            ping_interval: Seconds between keepalive pings
            read_timeout: Seconds without any frame before the session is
                considered dead (defaults to three ping intervals)
            close_timeout: Seconds to wait for the closing handshake
            verbose: Log every control frame and received frame at INFO
        """
        self.websocket_url = websocket_url
        self.subscriptions: List[Subscription] = list(subscriptions)
        self.on_message = on_message
        self.ping_interval = ping_interval
        self.read_timeout = read_timeout if read_timeout is not None else ping_interval * 3
        self.close_timeout = close_timeout
        self.verbose = verbose

        # Connection state
        self.websocket = None
        self._state = ConnectionState.IDLE
        self._closed = False
        self._done = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self._ping_task: Optional[asyncio.Task] = None

        self.stats = {
            "frames_received": 0,
            "frames_forwarded": 0,
            "pongs_received": 0,
            "pings_sent": 0,
            "callback_errors": 0,
        }

        logger.info(f"Initialized Polymarket WebSocket client for {websocket_url}")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_connected(self) -> bool:
        return self.websocket is not None and self._state in (
            ConnectionState.SUBSCRIBING,
            ConnectionState.RUNNING,
        )

    def _trace(self, msg: str) -> None:
        if self.verbose:
            logger.info(msg)
        else:
            logger.debug(msg)

    async def connect(self) -> None:
        """
        Dial the feed endpoint.

        Raises:
            FeedConnectionError: network, TLS or handshake failure, or the
                client was closed while dialing
        """
        if self._closed:
            raise FeedConnectionError("Client is closed")

        self._state = ConnectionState.CONNECTING
        logger.info(f"Connecting to {self.websocket_url}")

        try:
            websocket = await websockets.connect(
                self.websocket_url,
                ping_interval=None,  # keepalive is the text "ping" below
                close_timeout=self.close_timeout,
                max_size=2**20,
                compression=None,
            )
        except Exception as e:
            raise FeedConnectionError(f"Failed to connect to {self.websocket_url}: {e}") from e

        async with self._write_lock:
            if self._closed:
                await websocket.close()
                raise FeedConnectionError("Client was closed while connecting")
            self.websocket = websocket

        logger.info("WebSocket connection established")

    async def subscribe(self, subscriptions: Optional[Iterable[Subscription]] = None) -> None:
        """
        Send a subscribe control frame.

        Args:
            subscriptions: Subscriptions to add; defaults to the client's
                configured set

        Raises:
            ProtocolError: serialization or socket write failure
        """
        initial = subscriptions is None
        subs = self.subscriptions if initial else list(subscriptions)

        await self._send_control("subscribe", subs)

        if not initial:
            for sub in subs:
                if sub not in self.subscriptions:
                    self.subscriptions.append(sub)

    async def unsubscribe(self, subscriptions: Iterable[Subscription]) -> None:
        """
        Send an unsubscribe control frame.

        Raises:
            ProtocolError: serialization or socket write failure
        """
        subs = list(subscriptions)
        await self._send_control("unsubscribe", subs)
        self.subscriptions = [s for s in self.subscriptions if s not in subs]

    async def _send_control(self, action: str, subscriptions: List[Subscription]) -> None:
        try:
            data = SubscriptionMessage(action=action, subscriptions=subscriptions).to_json()
        except (ValueError, TypeError) as e:
            raise ProtocolError(f"Failed to serialize {action} message: {e}") from e

        self._trace(f"Sending {action}: {data}")

        async with self._write_lock:
            if self._closed or self.websocket is None:
                raise ProtocolError(f"Cannot {action}: connection is not open")
            try:
                await self.websocket.send(data)
            except (WebSocketException, OSError) as e:
                raise ProtocolError(f"Failed to send {action} message: {e}") from e

    async def _ping_loop(self) -> None:
        """Send "ping" every ping_interval until the client closes."""
        while not self._done.is_set():
            try:
                await asyncio.wait_for(self._done.wait(), timeout=self.ping_interval)
                return
            except asyncio.TimeoutError:
                pass

            async with self._write_lock:
                if self._closed or self.websocket is None:
                    return
                try:
                    await self.websocket.send(PING_MESSAGE)
                    self.stats["pings_sent"] += 1
                    self._trace("Sent ping")
                except (WebSocketException, OSError) as e:
                    logger.warning(f"Ping error: {e}")

    async def _dispatch(self, frame: bytes) -> None:
        if self.on_message is None:
            return
        try:
            result = self.on_message(frame)
            if inspect.isawaitable(result):
                await result
            self.stats["frames_forwarded"] += 1
        except Exception as e:
            self.stats["callback_errors"] += 1
            logger.error(f"Message callback failed: {e}", exc_info=True)

    async def _read_loop(self) -> None:
        websocket = self.websocket

        while not self._closed:
            try:
                message = await asyncio.wait_for(websocket.recv(), timeout=self.read_timeout)
            except asyncio.TimeoutError:
                if self._closed:
                    return
                raise FeedConnectionError(f"No frames received for {self.read_timeout:.1f}s")
            except ConnectionClosedOK:
                logger.info("Connection closed normally")
                return
            except ConnectionClosed as e:
                if self._closed:
                    return
                raise FeedConnectionError(f"Connection lost: {e}") from e
            except (WebSocketException, OSError) as e:
                if self._closed:
                    return
                raise FeedConnectionError(f"Read error: {e}") from e

            self.stats["frames_received"] += 1

            if isinstance(message, str):
                if message == PONG_MESSAGE:
                    self.stats["pongs_received"] += 1
                    self._trace("Received pong")
                    continue
                frame = message.encode("utf-8")
            else:
                frame = bytes(message)

            self._trace(f"Received: {frame[:512]!r}")
            await self._dispatch(frame)

    async def run(self) -> None:
        """
        Connect, start the keepalive, subscribe, then read until closed.

        Returns normally when the client is closed or the peer closes the
        connection cleanly. The connection is always closed on exit.

        Raises:
            FeedConnectionError: dial failure, lost connection or read timeout
            ProtocolError: the initial subscribe could not be sent
        """
        if self._closed:
            return
        if self._state is not ConnectionState.IDLE:
            raise FeedConnectionError("Client has already been run; create a new instance")

        try:
            await self.connect()
            self._ping_task = asyncio.create_task(self._ping_loop())

            self._state = ConnectionState.SUBSCRIBING
            await self.subscribe()

            self._state = ConnectionState.RUNNING
            logger.info(f"Subscribed to {len(self.subscriptions)} topic(s), reading messages")
            await self._read_loop()
        except (FeedConnectionError, ProtocolError):
            if self._closed:
                logger.info("Client closed during startup")
                return
            raise
        finally:
            await self.close()

    async def close(self) -> None:
        """Close the connection. Only the first call has any effect."""
        if self._closed:
            return
        self._closed = True
        self._state = ConnectionState.CLOSING
        logger.info("Closing Polymarket WebSocket client")

        self._done.set()

        async with self._write_lock:
            if self.websocket is not None:
                try:
                    await self.websocket.close()
                except (WebSocketException, OSError) as e:
                    logger.warning(f"Error closing WebSocket: {e}")
                self.websocket = None

        ping_task = self._ping_task
        if ping_task is not None and ping_task is not asyncio.current_task():
            await asyncio.gather(ping_task, return_exceptions=True)

        self._state = ConnectionState.CLOSED
        logger.info("Polymarket WebSocket client closed")

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "state": self._state.value,
            "subscriptions": len(self.subscriptions),
        }
