"""
Process Runtime

A process is an asyncio task that owns an unbounded mailbox and handles
one message at a time. Processes share no state; they interact only by
sending messages to each other's mailboxes and over channels.

Dispatch goes through two typed handler tables:
    - handlers: cast messages, keyed by message type
    - call_handlers: ChannelCall requests, keyed by request type
Anything else falls through to handle_unhandled(), which logs and drops.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .channel import DEFAULT_CHANNEL_BUFFER, ReceivePort, SendPort, new_channel
from .schemas import DisconnectReason

logger = logging.getLogger(__name__)

ExitCallback = Callable[["Process", DisconnectReason], None]


@dataclass(frozen=True)
class ChannelCall:
    """
    A request whose answers are delivered on a caller-supplied channel.

    Attributes:
        request: The request message
        reply_to: Sending end of the channel the callee answers on
    """

    request: Any
    reply_to: SendPort


def new_pid(name: Optional[str] = None) -> str:
    return f"<{name or 'proc'}.{uuid.uuid4().hex[:8]}>"


class Process:
    """
    Base class for mailbox-driven processes.

    Attributes:
        pid: Location-transparent process identifier
        name: Human readable name used in pids and logs
        exit_reason: Set once the process has terminated
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self.pid = new_pid(name)
        self.mailbox: asyncio.Queue = asyncio.Queue()
        self.handlers: Dict[type, Callable[[Any], None]] = {}
        self.call_handlers: Dict[type, Callable[[Any, SendPort], None]] = {}
        self.exit_reason: Optional[DisconnectReason] = None
        self._task: Optional[asyncio.Task] = None
        self._monitors: Dict[int, ExitCallback] = {}
        self._next_monitor = 0

    @property
    def alive(self) -> bool:
        return self.exit_reason is None

    def start(self) -> asyncio.Task:
        """Start the message loop on the running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Stop the process; it exits with reason NORMAL."""
        if self._task is None:
            self._exit(DisconnectReason.NORMAL)
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def send(self, message: Any):
        """Cast a message to this process. Messages to a dead process are dropped."""
        if not self.alive:
            logger.debug(f"Dropping message for exited process {self.pid}")
            return
        self.mailbox.put_nowait(message)

    async def run(self):
        """Receive and dispatch messages until stopped or a handler fails."""
        logger.info(f"Process {self.pid} started")
        reason = DisconnectReason.NORMAL
        try:
            while True:
                message = await self.mailbox.get()
                self.dispatch(message)
        except Exception:
            logger.exception(f"Process {self.pid} crashed")
            reason = DisconnectReason.EXCEPTION
        finally:
            self._exit(reason)

    def dispatch(self, message: Any):
        """Route one message to its handler."""
        if isinstance(message, ChannelCall):
            call_handler = self.call_handlers.get(type(message.request))
            if call_handler is not None:
                call_handler(message.request, message.reply_to)
                return
        else:
            handler = self.handlers.get(type(message))
            if handler is not None:
                handler(message)
                return
        self.handle_unhandled(message)

    def handle_unhandled(self, message: Any):
        logger.warning(
            f"Process {self.pid} discarding unhandled message: {message!r}"
        )

    def on_exit(self, reason: DisconnectReason):
        """Hook run once when the process terminates."""

    def monitor(self, callback: ExitCallback) -> int:
        """
        Watch this process for termination.

        The callback runs once with the exit reason; it runs immediately if
        the process has already exited.

        Returns:
            int: Handle for demonitor()
        """
        handle = self._next_monitor
        self._next_monitor += 1
        if not self.alive:
            callback(self, self.exit_reason)
        else:
            self._monitors[handle] = callback
        return handle

    def demonitor(self, handle: int):
        self._monitors.pop(handle, None)

    def _exit(self, reason: DisconnectReason):
        if not self.alive:
            return
        self.exit_reason = reason
        try:
            self.on_exit(reason)
        except Exception:
            logger.exception(f"Exit hook failed for process {self.pid}")
        monitors = list(self._monitors.values())
        self._monitors.clear()
        for callback in monitors:
            try:
                callback(self, reason)
            except Exception:
                logger.exception(f"Monitor callback failed for {self.pid}")
        logger.info(f"Process {self.pid} exited ({reason.value})")


def call_channel(
    process: Process,
    request: Any,
    maxsize: int = DEFAULT_CHANNEL_BUFFER,
) -> ReceivePort:
    """
    Send a request to an in-process process and return the receiving end
    of the channel its answers arrive on.
    """
    send_port, receive_port = new_channel(maxsize)
    process.send(ChannelCall(request, send_port))
    return receive_port
