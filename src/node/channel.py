"""
Typed Reply Channels

A channel is a one-way delivery path from the server to one client,
separate from the server's mailbox. The sending end (SendPort) is held by
the server; the receiving end belongs to the client.

Sends never block: every channel has its own bounded buffer and a full
buffer drops the message for that recipient only, so one slow client
cannot stall a fan-out.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from .schemas import DisconnectReason

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_BUFFER = 256

CloseCallback = Callable[["SendPort", DisconnectReason], None]


class ChannelClosed(Exception):
    """Raised when receiving from a channel that has been closed."""

    def __init__(self, reason: Optional[DisconnectReason] = None):
        super().__init__(f"Channel closed ({reason.value if reason else ''})")
        self.reason = reason


def new_channel_id() -> str:
    return f"ch-{uuid.uuid4().hex[:12]}"


class SendPort:
    """
    Sending end of a reply channel.

    Subclasses implement _deliver(); this class keeps the close state and
    the close callbacks used by the liveness monitor.
    """

    def __init__(self, channel_id: Optional[str] = None):
        self.channel_id = channel_id or new_channel_id()
        self._close_reason: Optional[DisconnectReason] = None
        self._close_callbacks: Dict[int, CloseCallback] = {}
        self._next_callback = 0

    @property
    def closed(self) -> bool:
        return self._close_reason is not None

    @property
    def close_reason(self) -> Optional[DisconnectReason]:
        return self._close_reason

    def send(self, message: Any) -> bool:
        """
        Queue a message for delivery without blocking.

        Returns:
            bool: False if the channel is closed or its buffer is full
        """
        if self.closed:
            logger.debug(f"Dropping message for closed channel {self.channel_id}")
            return False
        return self._deliver(message)

    def _deliver(self, message: Any) -> bool:
        raise NotImplementedError

    def close(self, reason: DisconnectReason = DisconnectReason.NORMAL):
        """
        Close the channel. Only the first call has any effect; close
        callbacks run exactly once with that call's reason.
        """
        if self.closed:
            return
        self._close_reason = reason
        self._on_close(reason)
        callbacks = list(self._close_callbacks.values())
        self._close_callbacks.clear()
        for callback in callbacks:
            try:
                callback(self, reason)
            except Exception:
                logger.exception(
                    f"Close callback failed for channel {self.channel_id}"
                )

    def _on_close(self, reason: DisconnectReason):
        """Hook for subclasses to release transport resources."""

    def add_close_callback(self, callback: CloseCallback) -> int:
        """
        Register a callback run when the channel closes.

        A callback added to an already closed channel runs immediately.

        Returns:
            int: Handle for remove_close_callback()
        """
        handle = self._next_callback
        self._next_callback += 1
        if self.closed:
            callback(self, self._close_reason)
        else:
            self._close_callbacks[handle] = callback
        return handle

    def remove_close_callback(self, handle: int):
        self._close_callbacks.pop(handle, None)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.channel_id}>"


_CLOSED = object()


class LocalSendPort(SendPort):
    """Sending end of an in-process channel."""

    def __init__(self, queue: asyncio.Queue, maxsize: int, channel_id=None):
        super().__init__(channel_id)
        # Unbounded queue so the close marker always fits; maxsize is
        # enforced here instead.
        self._queue = queue
        self._maxsize = maxsize

    def _deliver(self, message: Any) -> bool:
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            logger.warning(
                f"Channel {self.channel_id} buffer full, dropping message"
            )
            return False
        self._queue.put_nowait(message)
        return True

    def _on_close(self, reason: DisconnectReason):
        self._queue.put_nowait(_CLOSED)


class ReceivePort:
    """Receiving end of an in-process channel."""

    def __init__(self, send_port: LocalSendPort, queue: asyncio.Queue):
        self._send_port = send_port
        self._queue = queue

    @property
    def channel_id(self) -> str:
        return self._send_port.channel_id

    async def receive(self) -> Any:
        """
        Wait for the next message.

        Raises:
            ChannelClosed: Once the channel is closed and drained
        """
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later receive() call.
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed(self._send_port.close_reason)
        return item

    def close(self, reason: DisconnectReason = DisconnectReason.DISCONNECT):
        """Close from the receiving side, as when the client goes away."""
        self._send_port.close(reason)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration


def new_channel(
    maxsize: int = DEFAULT_CHANNEL_BUFFER,
) -> Tuple[LocalSendPort, ReceivePort]:
    """
    Create an in-process channel.

    Args:
        maxsize: Number of undelivered messages buffered before sends drop

    Returns:
        tuple: (send_port, receive_port)
    """
    queue: asyncio.Queue = asyncio.Queue()
    send_port = LocalSendPort(queue, maxsize)
    return send_port, ReceivePort(send_port, queue)
