"""
Protocol Messages for Client-Node Communication

This module defines the message structures for WebSocket communication
between the chat client and a node server.

Message Format:
    All messages are JSON objects with the following structure:
    {
        "type": "message_type",
        "data": { ... message-specific data ... }
    }

Requests that expect an answer carry a "ref" which the node echoes in the
matching reply or error.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict
import json

NICKNAME_IN_USE = "nickname already in use"


class ProtocolError(ValueError):
    """Raised when a frame from the node cannot be decoded."""


@dataclass(frozen=True)
class Sender:
    """
    Origin of a chat message.

    Attributes:
        nickname: Client nickname, None when the server is the sender
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
            return {"kind": "server"}
        return {"kind": "client", "nickname": self.nickname}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sender":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise ProtocolError("Sender must be an object")
        kind = data.get("kind")
        if kind == "server":
            return cls.server()
        if kind == "client" and data.get("nickname"):
            return cls.client(data["nickname"])
        raise ProtocolError(f"Invalid sender: {data}")


@dataclass(frozen=True)
class ChatMessage:
    """
    Chat content or a system notice.

    Attributes:
        sender: Who sent the message
        body: Message text
    """

    sender: Sender
    body: str

    @property
    def is_rejection(self) -> bool:
        """True for the server's nickname-in-use notice."""
        return self.sender.is_server and self.body.startswith(NICKNAME_IN_USE)

    def to_dict(self, to: str) -> Dict[str, Any]:
        """Convert to a frame addressed to the server process `to`."""
        return {
            "type": "chat_message",
            "data": {
                "to": to,
                "from": self.sender.to_dict(),
                "body": self.body,
            },
        }

    def to_json(self, to: str) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(to))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        """Create from dictionary."""
        message_data = data.get("data", data)
        body = message_data.get("body")
        if not isinstance(body, str):
            raise ProtocolError("Chat message without body")
        return cls(Sender.from_dict(message_data.get("from")), body)


@dataclass
class WhereIsRequest:
    """
    Request to look up a process by name on the node.

    Attributes:
        ref: Request reference
        name: Registered name to look up
    """

    ref: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": "whereis", "data": asdict(self)}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class WhereIsReply:
    """
    Answer to a whereis request.

    Attributes:
        ref: Reference of the request
        name: The name looked up
        pid: Pid of the registered process, None if nothing is registered
    """

    ref: Optional[str]
    name: str
    pid: Optional[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WhereIsReply":
        """Create from dictionary."""
        reply_data = data.get("data", data)
        return cls(
            ref=reply_data.get("ref"),
            name=reply_data.get("name", ""),
            pid=reply_data.get("pid"),
        )


@dataclass
class LinkRequest:
    """
    Request to be notified when a process exits.

    Attributes:
        pid: Pid of the process to link to
    """

    pid: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": "link", "data": asdict(self)}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class ExitNotification:
    """
    A linked process has exited.

    Attributes:
        pid: Pid of the process
        reason: Exit reason reported by the node
    """

    pid: str
    reason: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExitNotification":
        """Create from dictionary."""
        exit_data = data.get("data", data)
        return cls(pid=exit_data.get("pid", ""), reason=exit_data.get("reason", ""))


@dataclass
class JoinRequest:
    """
    Request to join a chat server under a nickname.

    Attributes:
        ref: Request reference
        to: Pid of the chat server
        nickname: Nickname to register
    """

    ref: str
    to: str
    nickname: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": "join_request", "data": asdict(self)}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class JoinReply:
    """
    Join handshake answer carrying the reply channel.

    Attributes:
        ref: Reference of the join request
        channel_id: Channel the server delivers chat messages on
    """

    ref: Optional[str]
    channel_id: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JoinReply":
        """Create from dictionary."""
        reply_data = data.get("data", data)
        channel_id = reply_data.get("channel_id")
        if not channel_id:
            raise ProtocolError("Join reply without channel_id")
        return cls(ref=reply_data.get("ref"), channel_id=channel_id)


@dataclass
class ChannelMessage:
    """
    A chat message delivered on a reply channel.

    Attributes:
        channel_id: Channel the message arrived on
        message: The chat message
    """

    channel_id: str
    message: ChatMessage

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelMessage":
        """Create from dictionary."""
        message_data = data.get("data", data)
        channel_id = message_data.get("channel_id")
        if not channel_id:
            raise ProtocolError("Chat message without channel_id")
        return cls(channel_id, ChatMessage.from_dict(message_data))


@dataclass
class ErrorResponse:
    """
    Error reported by the node.

    Attributes:
        ref: Reference of the failed request, if known
        message: Error message
        error_code: Machine readable error code
    """

    ref: Optional[str]
    message: str
    error_code: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorResponse":
        """Create from dictionary."""
        error_data = data.get("data", data)
        return cls(
            ref=error_data.get("ref"),
            message=error_data.get("message", "Unknown error"),
            error_code=error_data.get("error_code", "error"),
        )


_FRAME_TYPES = {
    "whereis_reply": WhereIsReply,
    "join_reply": JoinReply,
    "chat_message": ChannelMessage,
    "exit": ExitNotification,
    "error": ErrorResponse,
}


def parse_frame(json_str: str):
    """
    Decode a frame received from the node.

    Returns:
        One of WhereIsReply, JoinReply, ChannelMessage, ExitNotification
        or ErrorResponse

    Raises:
        ProtocolError: If the frame is malformed or of an unknown type
    """
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")

    frame_type = _FRAME_TYPES.get(data.get("type"))
    if frame_type is None:
        raise ProtocolError(f"Unknown frame type: {data.get('type')}")
    if not isinstance(data.get("data", {}), dict):
        raise ProtocolError("Frame data must be an object")
    return frame_type.from_dict(data)
