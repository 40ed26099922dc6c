"""
Schemas for Node Server

This module contains the message catalog of the chat server process and
the frame builders used by the node's WebSocket transport.
"""

from .messages import (
    NICKNAME_IN_USE,
    SERVER,
    Sender,
    JoinRequest,
    ChatMessage,
    DisconnectReason,
    DisconnectNotification,
    joined_notice,
    left_notice,
    nickname_in_use_notice,
    encode_chat_message,
    decode_chat_message,
)
from .responses import (
    create_error_response,
    create_whereis_reply,
    create_join_reply,
    create_exit_notification,
)

__all__ = [
    "NICKNAME_IN_USE",
    "SERVER",
    "Sender",
    "JoinRequest",
    "ChatMessage",
    "DisconnectReason",
    "DisconnectNotification",
    "joined_notice",
    "left_notice",
    "nickname_in_use_notice",
    "encode_chat_message",
    "decode_chat_message",
    "create_error_response",
    "create_whereis_reply",
    "create_join_reply",
    "create_exit_notification",
]
