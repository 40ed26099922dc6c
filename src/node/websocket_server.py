"""
WebSocket Server for Node

Carries the chat protocol between remote clients and the processes
running on this node. Each client connection can:
    - look up registered processes by name (whereis)
    - link to a process and be told when it exits
    - join a chat server, receiving a reply channel over the connection
    - cast chat messages to a chat server

Liveness: a connection that closes or stops answering pings closes every
reply channel it carries with reason DISCONNECT, which the liveness
monitor turns into DisconnectNotification messages.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set, Tuple

import websockets
import websockets.exceptions

from .channel import DEFAULT_CHANNEL_BUFFER, SendPort
from .name_registry import NameRegistry
from .process import ChannelCall, Process
from .schemas import (
    ChatMessage,
    DisconnectReason,
    JoinRequest,
    create_error_response,
    create_exit_notification,
    create_join_reply,
    create_whereis_reply,
    decode_chat_message,
    encode_chat_message,
)
from .utils import validate_nickname

logger = logging.getLogger(__name__)

# Keepalive constants
HEARTBEAT_INTERVAL = 20  # seconds
HEARTBEAT_TIMEOUT = 20  # seconds


class WebSocketChannel(SendPort):
    """
    Reply channel delivered as chat_message frames over a client's
    WebSocket connection.

    A per-channel writer task drains a bounded outbox, so send() never
    waits on the network. Closing with reason NORMAL still writes what was
    queued before the close; any other reason discards it.

    Attributes:
        nickname: Nickname the channel was requested for
    """

    def __init__(
        self,
        websocket,
        maxsize: int = DEFAULT_CHANNEL_BUFFER,
        nickname: Optional[str] = None,
    ):
        super().__init__()
        self.websocket = websocket
        self.nickname = nickname
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._writer = asyncio.create_task(self._write_loop())
        self._finisher: Optional[asyncio.Task] = None

    def _deliver(self, message: ChatMessage) -> bool:
        try:
            self._outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Channel {self.channel_id} outbox full, dropping message"
            )
            return False

    async def flush(self):
        """Wait until every queued message has been written."""
        await self._outbox.join()

    async def _write_loop(self):
        try:
            while True:
                message = await self._outbox.get()
                try:
                    frame = encode_chat_message(self.channel_id, message)
                    await self.websocket.send(json.dumps(frame))
                finally:
                    self._outbox.task_done()
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Connection of channel {self.channel_id} closed")
            self.close(DisconnectReason.DISCONNECT)
        except Exception as e:
            logger.error(f"Error writing to channel {self.channel_id}: {e}")
            self.close(DisconnectReason.EXCEPTION)
        # The channel may already be closed and draining.
        self._discard_pending()

    def _on_close(self, reason: DisconnectReason):
        if reason is DisconnectReason.NORMAL and not self._outbox.empty():
            self._finisher = asyncio.ensure_future(self._finish())
            return
        self._stop_writer()

    async def _finish(self):
        await self.flush()
        self._stop_writer()
        logger.debug(f"Channel {self.channel_id} drained and closed")

    def _stop_writer(self):
        if self._writer is not asyncio.current_task():
            self._writer.cancel()
        self._discard_pending()

    def _discard_pending(self):
        # Unblocks flush() for anything still queued.
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()


class ClientConnection:
    """
    Per-connection state: the reply channels opened over it and the
    processes it is linked to.
    """

    def __init__(self, websocket):
        self.websocket = websocket
        self.channels: Dict[str, WebSocketChannel] = {}
        self.links: Dict[str, Tuple[Process, int]] = {}  # pid -> monitor

    def nicknames(self) -> Set[str]:
        """Nicknames of the channels still open over this connection."""
        return {channel.nickname for channel in self.channels.values()}


class WebSocketServer:
    """
    WebSocket server for handling client connections.

    This server decodes incoming frames from clients and turns them into
    messages for the processes registered in the node's name registry.
    """

    def __init__(
        self,
        name_registry: NameRegistry,
        host: str,
        port: int,
        heartbeat_interval: Optional[float] = HEARTBEAT_INTERVAL,
        heartbeat_timeout: Optional[float] = HEARTBEAT_TIMEOUT,
        channel_buffer: int = DEFAULT_CHANNEL_BUFFER,
    ):
        """
        Initialize the WebSocket server.

        Args:
            name_registry: Registry of the processes clients may address
            host: Host address to bind to
            port: Port to listen on (0 picks a free port)
            heartbeat_interval: Seconds between keepalive pings
            heartbeat_timeout: Seconds to wait for a pong before dropping
            channel_buffer: Outbox size of each reply channel
        """
        self.name_registry = name_registry
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self.channel_buffer = channel_buffer
        self.connections: Set[ClientConnection] = set()
        self.server = None
        self._background: Set[asyncio.Task] = set()

    async def start(self):
        """Start the WebSocket server."""
        self.server = await websockets.serve(
            self.handle_client,
            self.host,
            self.port,
            ping_interval=self.heartbeat_interval,
            ping_timeout=self.heartbeat_timeout,
        )
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]
        logger.info(f"WebSocket server started on ws://{self.host}:{self.port}")

    async def stop(self):
        """Stop the WebSocket server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("WebSocket server stopped")

    async def handle_client(self, websocket):
        """
        Handle a client connection.

        Args:
            websocket: The WebSocket connection
        """
        connection = ClientConnection(websocket)
        self.connections.add(connection)
        client_id = id(websocket)
        logger.info(f"Client {client_id} connected")

        try:
            async for message in websocket:
                await self.process_message(connection, message)
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Client {client_id} disconnected")
        except Exception as e:
            logger.error(f"Error handling client {client_id}: {e}")
        finally:
            self.close_connection(connection, DisconnectReason.DISCONNECT)
            self.connections.discard(connection)

    def close_connection(
        self, connection: ClientConnection, reason: DisconnectReason
    ):
        """Drop a connection's links and close its reply channels."""
        for process, handle in connection.links.values():
            process.demonitor(handle)
        connection.links.clear()
        for channel in list(connection.channels.values()):
            channel.close(reason)
        connection.channels.clear()

    async def process_message(self, connection: ClientConnection, message):
        """
        Process an incoming frame from a client.

        Args:
            connection: The client connection
            message: The frame (JSON string)
        """
        websocket = connection.websocket
        ref = None
        try:
            frame = json.loads(message)
            if not isinstance(frame, dict):
                raise ValueError("Frame must be a JSON object")
            message_type = frame.get("type")
            data = frame.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError("Frame data must be an object")
            ref = data.get("ref")

            if message_type == "whereis":
                await self.handle_whereis(connection, data)
            elif message_type == "link":
                await self.handle_link(connection, data)
            elif message_type == "join_request":
                await self.handle_join_request(connection, data)
            elif message_type == "chat_message":
                await self.handle_chat_message(connection, data)
            else:
                logger.warning(f"Unknown message type: {message_type}")
                await self.send_error(
                    websocket,
                    f"Unknown message type: {message_type}",
                    "unknown_type",
                    ref,
                )

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received: {e}")
            await self.send_error(websocket, "Invalid JSON format", "invalid_json")
        except ValueError as e:
            logger.warning(f"Invalid request: {e}")
            await self.send_error(websocket, str(e), "invalid_request", ref)

    async def handle_whereis(self, connection: ClientConnection, data: dict):
        """Answer a name lookup against the node's name registry."""
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("Missing name")

        process = self.name_registry.whereis(name)
        pid = process.pid if process is not None else None
        logger.debug(f"whereis '{name}' -> {pid}")
        await self._send(
            connection.websocket, create_whereis_reply(data.get("ref"), name, pid)
        )

    async def handle_link(self, connection: ClientConnection, data: dict):
        """
        Link the connection to a process: when the process exits, the client
        receives an exit frame.
        """
        pid = data.get("pid")
        if not isinstance(pid, str):
            raise ValueError("Missing pid")
        if pid in connection.links:
            return

        process = self.name_registry.get_process(pid)
        if process is None or not process.alive:
            await self._send(
                connection.websocket, create_exit_notification(pid, "noproc")
            )
            return

        def _on_exit(proc: Process, reason: DisconnectReason):
            connection.links.pop(proc.pid, None)
            self._spawn(
                self._send(
                    connection.websocket,
                    create_exit_notification(proc.pid, reason.value),
                )
            )

        connection.links[pid] = (process, process.monitor(_on_exit))
        logger.info(f"Client {id(connection.websocket)} linked to {pid}")

    async def handle_join_request(
        self, connection: ClientConnection, data: dict
    ):
        """
        Open a reply channel over the connection and hand the join request
        to the target chat server.
        """
        ref = data.get("ref")
        nickname = data.get("nickname")
        is_valid, error = validate_nickname(nickname)
        if not is_valid:
            raise ValueError(error)

        process = await self._target(connection, data)
        if process is None:
            return

        channel = WebSocketChannel(
            connection.websocket, self.channel_buffer, nickname=nickname
        )
        connection.channels[channel.channel_id] = channel
        channel.add_close_callback(
            lambda port, reason: connection.channels.pop(port.channel_id, None)
        )

        # The handshake reply goes out before anything on the channel.
        await self._send(
            connection.websocket, create_join_reply(ref, channel.channel_id)
        )
        process.send(ChannelCall(JoinRequest(nickname), channel))
        logger.info(
            f"Join request from {nickname} forwarded to {process.pid} "
            f"on {channel.channel_id}"
        )

    async def handle_chat_message(
        self, connection: ClientConnection, data: dict
    ):
        """Cast a client's chat message to the target chat server."""
        message = decode_chat_message(data)
        if message.sender.is_server:
            logger.warning(
                f"Client {id(connection.websocket)} tried to send as server"
            )
            await self.send_error(
                connection.websocket,
                "Clients cannot send as the server",
                "forbidden_sender",
                data.get("ref"),
            )
            return
        if message.sender.nickname not in connection.nicknames():
            logger.warning(
                f"Client {id(connection.websocket)} tried to send as "
                f"{message.sender.nickname} without joining"
            )
            await self.send_error(
                connection.websocket,
                "Clients can only send as a nickname they joined with",
                "forbidden_sender",
                data.get("ref"),
            )
            return

        process = await self._target(connection, data)
        if process is not None:
            process.send(message)

    async def _target(
        self, connection: ClientConnection, data: dict
    ) -> Optional[Process]:
        pid = data.get("to")
        if not isinstance(pid, str):
            raise ValueError("Missing target pid")

        process = self.name_registry.get_process(pid)
        if process is None or not process.alive:
            await self.send_error(
                connection.websocket,
                f"No such process: {pid}",
                "noproc",
                data.get("ref"),
            )
            return None
        return process

    async def send_error(
        self,
        websocket,
        error_message: str,
        error_code: str,
        ref: Optional[str] = None,
    ):
        """
        Send an error frame to a client.

        Args:
            websocket: The WebSocket connection
            error_message: Error message text
            error_code: Machine readable error code
            ref: Reference of the failed request, if known
        """
        await self._send(
            websocket, create_error_response(error_message, error_code, ref)
        )

    async def _send(self, websocket, frame: Dict[str, Any]):
        try:
            await websocket.send(json.dumps(frame))
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Dropping {frame.get('type')} frame, connection closed")

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
