"""
Client Package

This package provides the client side of the chat system: the
ClientService connection to a node (discovery, link, join), the
ChatClient session with its receive and send loops, protocol message
definitions, and the console and terminal user interfaces.
"""

from .service import (
    ClientService,
    ChannelReceiver,
    ChannelClosed,
    DiscoveryPolicy,
    DiscoveryError,
    JoinError,
    RequestError,
    ServerExited,
    ServerHandle,
)
from .chat_client import ChatClient, NicknameRejected, format_message
from .line_source import QueueLineSource, StdinLineSource
from .protocol import (
    Sender,
    ChatMessage,
    WhereIsRequest,
    WhereIsReply,
    LinkRequest,
    ExitNotification,
    JoinRequest,
    JoinReply,
    ChannelMessage,
    ErrorResponse,
    ProtocolError,
    parse_frame,
)

__all__ = [
    # Service classes
    "ClientService",
    "ChannelReceiver",
    "ChannelClosed",
    "DiscoveryPolicy",
    "DiscoveryError",
    "JoinError",
    "RequestError",
    "ServerExited",
    "ServerHandle",
    "ChatClient",
    "NicknameRejected",
    "format_message",
    "QueueLineSource",
    "StdinLineSource",
    # Protocol messages
    "Sender",
    "ChatMessage",
    "WhereIsRequest",
    "WhereIsReply",
    "LinkRequest",
    "ExitNotification",
    "JoinRequest",
    "JoinReply",
    "ChannelMessage",
    "ErrorResponse",
    "ProtocolError",
    "parse_frame",
]
