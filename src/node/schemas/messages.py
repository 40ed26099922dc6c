"""
Message Catalog

The closed set of messages the chat server process understands, together
with the JSON encoding used when they travel between node and client.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..utils.validation import validate_message_content

SERVER_KIND = "server"
CLIENT_KIND = "client"

NICKNAME_IN_USE = "nickname already in use"


@dataclass(frozen=True)
class Sender:
    """
    Origin of a chat message: the server itself or a named client.

    Attributes:
        nickname: Client nickname, or None when the server is the sender
    """

    nickname: Optional[str] = None

    @classmethod
    def server(cls) -> "Sender":
        return cls(None)

    @classmethod
    def client(cls, nickname: str) -> "Sender":
        return cls(nickname)

    @property
    def is_server(self) -> bool:
        return self.nickname is None

    def to_dict(self) -> Dict[str, Any]:
        if self.is_server:
            return {"kind": SERVER_KIND}
        return {"kind": CLIENT_KIND, "nickname": self.nickname}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sender":
        """
        Decode a sender from its wire form.

        Raises:
            ValueError: If the kind is unknown or a client has no nickname
        """
        if not isinstance(data, dict):
            raise ValueError("Sender must be an object")
        kind = data.get("kind")
        if kind == SERVER_KIND:
            return cls.server()
        if kind == CLIENT_KIND:
            nickname = data.get("nickname")
            if not isinstance(nickname, str) or not nickname:
                raise ValueError("Client sender requires a nickname")
            return cls.client(nickname)
        raise ValueError(f"Unknown sender kind: {kind}")

    def __str__(self) -> str:
        return "server" if self.is_server else self.nickname


SERVER = Sender.server()


@dataclass(frozen=True)
class JoinRequest:
    """Request to register under a unique nickname."""

    nickname: str


@dataclass(frozen=True)
class ChatMessage:
    """Chat content or a system notice."""

    sender: Sender
    body: str


class DisconnectReason(enum.Enum):
    """Why a watched channel stopped being reachable."""

    NORMAL = "normal"
    DISCONNECT = "disconnect"
    EXCEPTION = "exception"
    NODE_DOWN = "node_down"

    @property
    def is_disconnect(self) -> bool:
        """True for every abnormal loss of the peer."""
        return self is not DisconnectReason.NORMAL


@dataclass(frozen=True)
class DisconnectNotification:
    """Liveness-loss signal for a monitored channel."""

    channel_id: str
    reason: DisconnectReason


def joined_notice(nickname: str) -> ChatMessage:
    return ChatMessage(SERVER, f"{nickname} has joined")


def left_notice(nickname: str) -> ChatMessage:
    return ChatMessage(SERVER, f"{nickname} has left")


def nickname_in_use_notice(nickname: str) -> ChatMessage:
    return ChatMessage(SERVER, f"{NICKNAME_IN_USE}: {nickname}")


def encode_chat_message(
    channel_id: str,
    message: ChatMessage,
) -> Dict[str, Any]:
    """
    Create a chat_message frame delivered on a reply channel.

    Args:
        channel_id: Channel the message is delivered on
        message: The chat message

    Returns:
        dict: Frame ready for JSON serialization
    """
    return {
        "type": "chat_message",
        "data": {
            "channel_id": channel_id,
            "from": message.sender.to_dict(),
            "body": message.body,
        },
    }


def decode_chat_message(data: Dict[str, Any]) -> ChatMessage:
    """
    Decode the data part of a client chat_message frame.

    Raises:
        ValueError: If the sender or body is missing or invalid
    """
    sender = Sender.from_dict(data.get("from"))
    body = data.get("body")
    if not isinstance(body, str):
        raise ValueError("Missing message body")
    is_valid, error = validate_message_content(body)
    if not is_valid:
        raise ValueError(error)
    return ChatMessage(sender, body)
