"""
Node Server Package

This package provides the node side of the chat system: the process
runtime, reply channels, liveness monitoring, the chat server process and
the WebSocket transport that serves it to remote clients.
"""

from .channel import (
    ChannelClosed,
    SendPort,
    ReceivePort,
    new_channel,
    DEFAULT_CHANNEL_BUFFER,
)
from .process import Process, ChannelCall, call_channel
from .monitor import LivenessMonitor
from .registry import ClientRegistry, NicknameInUseError
from .chat_server import ChatServer
from .name_registry import NameRegistry
from .websocket_server import (
    WebSocketServer,
    WebSocketChannel,
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TIMEOUT,
)

__all__ = [
    "ChannelClosed",
    "SendPort",
    "ReceivePort",
    "new_channel",
    "DEFAULT_CHANNEL_BUFFER",
    "Process",
    "ChannelCall",
    "call_channel",
    "LivenessMonitor",
    "ClientRegistry",
    "NicknameInUseError",
    "ChatServer",
    "NameRegistry",
    "WebSocketServer",
    "WebSocketChannel",
    "HEARTBEAT_INTERVAL",
    "HEARTBEAT_TIMEOUT",
]
