"""
Client Service for the Chat System

This module provides the client's connection to a node server. A single
reader task demultiplexes incoming frames:
    - whereis_reply / join_reply / error -> the pending request with that ref
    - chat_message -> the ChannelReceiver of its channel
    - exit -> the link to the server process

Architecture:
    - Uses WebSocket for real-time bidirectional communication
    - Supports dependency injection for the network layer (for testability)
    - Async/await pattern for non-blocking I/O operations
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import websockets
import websockets.exceptions

from .protocol import (
    ChannelMessage,
    ChatMessage,
    ErrorResponse,
    ExitNotification,
    JoinReply,
    JoinRequest,
    LinkRequest,
    ProtocolError,
    WhereIsReply,
    WhereIsRequest,
    parse_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_JOIN_TIMEOUT = 5.0  # seconds


class DiscoveryError(ConnectionError):
    """Raised when the chat server could not be found."""


class ServerExited(ConnectionError):
    """Raised when the linked server process exits or becomes unreachable."""

    def __init__(self, reason: str):
        super().__init__(f"Server exited: {reason}")
        self.reason = reason


class RequestError(ValueError):
    """Raised when the node answers a request with an error frame."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code


class JoinError(ValueError):
    """Raised when the node refuses a join request."""


class ChannelClosed(Exception):
    """Raised when receiving from a closed channel."""


@dataclass(frozen=True)
class ServerHandle:
    """
    Resolved address of a chat server process.

    Attributes:
        name: Name the server was discovered under
        pid: Process identifier on the node
    """

    name: str
    pid: str


@dataclass
class DiscoveryPolicy:
    """
    How hard discover() tries to find the server.

    Attributes:
        attempt_timeout: Seconds allowed for each connect + whereis attempt
        max_attempts: Attempts before giving up, None to retry forever
        backoff: Delay before the second attempt, doubled after each miss
        max_backoff: Upper bound on the delay between attempts
    """

    attempt_timeout: float = 1.0
    max_attempts: Optional[int] = None
    backoff: float = 0.0
    max_backoff: float = 5.0

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        if self.backoff <= 0:
            return 0.0
        # Capped so the product stays a finite float on long waits.
        exponent = min(attempt - 1, 32)
        return min(self.backoff * (2 ** exponent), self.max_backoff)


_CLOSED = object()


class ChannelReceiver:
    """
    Receiving end of a reply channel delivered over the connection.

    Attributes:
        channel_id: Channel identifier assigned by the node
    """

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, message: ChatMessage):
        if not self._closed:
            self._queue.put_nowait(message)

    def _close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> ChatMessage:
        """
        Wait for the next message on the channel.

        Raises:
            ChannelClosed: Once the channel is closed and drained
        """
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed(self.channel_id)
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChatMessage:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration


class ClientService:
    """
    Connection from a chat client to a node server.

    Attributes:
        node_url: WebSocket URL of the node server (e.g., ws://localhost:8080)
        websocket: Active WebSocket connection (None if not connected)
    """

    def __init__(
        self,
        node_url: str,
        websocket_factory: Optional[Callable] = None,
        connect_kwargs: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the client service.

        Args:
            node_url: WebSocket URL of the node server
            websocket_factory: Optional factory for creating WebSocket
                             connections (for dependency injection/testing)
            connect_kwargs: Extra keyword arguments for the factory, such as
                            local_addr to bind the client side
        """
        self.node_url = node_url
        self.websocket = None
        self._websocket_factory = websocket_factory or websockets.connect
        self._connect_kwargs = connect_kwargs or {}
        self._connected = False
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._channels: Dict[str, ChannelReceiver] = {}
        self._links: Dict[str, asyncio.Future] = {}

        logger.info(f"ClientService initialized for node: {node_url}")

    async def connect(self) -> None:
        """
        Establish WebSocket connection to the node server.

        Raises:
            ConnectionError: If connection fails
        """
        try:
            logger.info(f"Connecting to {self.node_url}...")
            self.websocket = await self._websocket_factory(
                self.node_url, **self._connect_kwargs
            )
            self._connected = True
            logger.info("Successfully connected to node server")
        except Exception as e:
            logger.error(f"Failed to connect to node: {e}")
            raise ConnectionError(f"Could not connect to {self.node_url}: {e}")
        self._reader_task = asyncio.create_task(self._read_frames())

    async def disconnect(self) -> None:
        """Close the WebSocket connection."""
        websocket = self.websocket
        reader = self._reader_task
        self.websocket = None
        self._reader_task = None
        if websocket is not None:
            await websocket.close()
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self._connection_lost("disconnected")
        logger.info("Disconnected from node server")

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to a node."""
        return self._connected and self.websocket is not None

    async def discover(
        self,
        chat_name: str,
        policy: Optional[DiscoveryPolicy] = None,
    ) -> ServerHandle:
        """
        Find the chat server registered as `chat_name` on the node.

        Each attempt connects if needed and asks the node's name registry,
        bounded by the policy's attempt timeout. Misses, timeouts and
        connection failures are retried.

        Returns:
            ServerHandle of the resolved server

        Raises:
            DiscoveryError: If the policy's attempts are exhausted
        """
        policy = policy or DiscoveryPolicy()
        attempt = 0
        while True:
            attempt += 1
            try:
                pid = await asyncio.wait_for(
                    self._whereis(chat_name), timeout=policy.attempt_timeout
                )
                if pid is not None:
                    logger.info(f"Discovered '{chat_name}' at {pid}")
                    return ServerHandle(chat_name, pid)
                logger.info(f"'{chat_name}' not registered yet (attempt {attempt})")
            except asyncio.TimeoutError:
                logger.info(f"Lookup of '{chat_name}' timed out (attempt {attempt})")
            except RequestError as e:
                raise DiscoveryError(f"Lookup of '{chat_name}' refused: {e}")
            except ConnectionError as e:
                logger.info(f"Node unreachable (attempt {attempt}): {e}")

            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                raise DiscoveryError(
                    f"Could not find '{chat_name}' at {self.node_url} "
                    f"after {attempt} attempts"
                )
            await asyncio.sleep(policy.delay(attempt))

    async def _whereis(self, name: str) -> Optional[str]:
        if not self.is_connected:
            await self.connect()
        reply = await self._request(WhereIsRequest(self._new_ref(), name))
        return reply.pid

    async def link(self, handle: ServerHandle) -> asyncio.Future:
        """
        Link to the server process.

        Returns:
            Future resolved with the exit reason once the server exits or
            the connection to it is lost
        """
        if not self.is_connected:
            raise ConnectionError("Not connected to a node server")
        future = self._links.get(handle.pid)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._links[handle.pid] = future
            await self._send(LinkRequest(handle.pid).to_json())
            logger.info(f"Linked to {handle.pid}")
        return future

    async def join(
        self,
        handle: ServerHandle,
        nickname: str,
        timeout: float = DEFAULT_JOIN_TIMEOUT,
    ) -> ChannelReceiver:
        """
        Join the chat server and return the receiving end of the channel
        the server delivers chat messages on.

        Raises:
            asyncio.TimeoutError: If the handshake times out
            ServerExited: If the server exits during the handshake
            JoinError: If the node refuses the request
        """
        if not self.is_connected:
            raise ConnectionError("Not connected to a node server")
        logger.info(f"Joining {handle.name} as {nickname}")

        request = JoinRequest(self._new_ref(), handle.pid, nickname)
        link = self._links.get(handle.pid)
        reply_task = asyncio.ensure_future(
            asyncio.wait_for(self._request(request), timeout)
        )
        if link is not None:
            await asyncio.wait(
                {reply_task, link}, return_when=asyncio.FIRST_COMPLETED
            )
            if not reply_task.done():
                reply_task.cancel()
                raise ServerExited(link.result())
        try:
            return await reply_task
        except RequestError as e:
            if e.error_code == "noproc":
                raise ServerExited("noproc")
            raise JoinError(str(e))

    async def cast(self, handle: ServerHandle, message: ChatMessage) -> None:
        """Send a chat message to the server without waiting for a reply."""
        if not self.is_connected:
            raise ConnectionError("Not connected to a node server")
        await self._send(message.to_json(handle.pid))

    def release(self, receiver: ChannelReceiver) -> None:
        """Stop tracking a channel the node has closed and end its receiver."""
        self._channels.pop(receiver.channel_id, None)
        receiver._close()

    async def _request(self, request):
        future = asyncio.get_running_loop().create_future()
        self._pending[request.ref] = future
        try:
            await self._send(request.to_json())
            return await future
        finally:
            self._pending.pop(request.ref, None)

    async def _send(self, frame: str):
        try:
            await self.websocket.send(frame)
        except websockets.exceptions.ConnectionClosed as e:
            self._connection_lost("connection closed")
            raise ConnectionError(f"Connection to {self.node_url} closed: {e}")

    async def _read_frames(self):
        """Receive frames until the connection closes."""
        try:
            async for raw in self.websocket:
                try:
                    frame = parse_frame(raw)
                except ProtocolError as e:
                    logger.warning(f"Dropping malformed frame: {e}")
                    continue
                self._dispatch(frame)
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed by server")
        except Exception as e:
            logger.error(f"Error in frame reader: {e}")
        finally:
            self._connection_lost("connection lost")

    def _dispatch(self, frame):
        if isinstance(frame, ChannelMessage):
            receiver = self._channels.get(frame.channel_id)
            if receiver is None:
                logger.debug(f"Message for unknown channel {frame.channel_id}")
            else:
                receiver._put(frame.message)
        elif isinstance(frame, JoinReply):
            # Registered here so messages following the reply are not lost.
            receiver = ChannelReceiver(frame.channel_id)
            self._channels[frame.channel_id] = receiver
            self._resolve(frame.ref, receiver)
        elif isinstance(frame, WhereIsReply):
            self._resolve(frame.ref, frame)
        elif isinstance(frame, ExitNotification):
            logger.warning(f"Linked process {frame.pid} exited: {frame.reason}")
            future = self._links.pop(frame.pid, None)
            if future is not None and not future.done():
                future.set_result(frame.reason)
        elif isinstance(frame, ErrorResponse):
            logger.warning(f"Node error ({frame.error_code}): {frame.message}")
            future = self._pending.get(frame.ref) if frame.ref else None
            if future is not None and not future.done():
                future.set_exception(
                    RequestError(frame.message, frame.error_code)
                )

    def _resolve(self, ref: Optional[str], result):
        future = self._pending.get(ref)
        if future is None or future.done():
            logger.debug(f"No pending request for ref {ref}")
            return
        future.set_result(result)

    def _connection_lost(self, reason: str):
        self._connected = False
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        for future in self._links.values():
            if not future.done():
                future.set_result(reason)
        self._links.clear()
        for receiver in self._channels.values():
            receiver._close()
        self._channels.clear()

    @staticmethod
    def _new_ref() -> str:
        return uuid.uuid4().hex[:12]
