"""
Client Registry

The chat server's mapping from nickname to reply channel. Only the chat
server's dispatch loop reads or writes it.
"""

import logging
from typing import Dict, List, Optional

from .channel import SendPort

logger = logging.getLogger(__name__)


class NicknameInUseError(ValueError):
    """Raised when registering a nickname that is already taken."""


class ClientRegistry:
    """
    Registered clients of a chat room.

    Keys are unique nicknames; an entry exists exactly while its client is
    considered connected.
    """

    def __init__(self):
        self._channels: Dict[str, SendPort] = {}  # nickname -> channel
        self._nicknames: Dict[str, str] = {}  # channel_id -> nickname

    def __contains__(self, nickname: str) -> bool:
        return nickname in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    def register(self, nickname: str, channel: SendPort):
        """
        Register a client.

        Args:
            nickname: The client's nickname
            channel: Reply channel to the client

        Raises:
            NicknameInUseError: If the nickname is already registered
        """
        if nickname in self._channels:
            raise NicknameInUseError(nickname)
        self._channels[nickname] = channel
        self._nicknames[channel.channel_id] = nickname
        logger.debug(f"Registered {nickname} on {channel.channel_id}")

    def nickname_for(self, channel_id: str) -> Optional[str]:
        """Returns the nickname registered on a channel, or None."""
        return self._nicknames.get(channel_id)

    def get_channel(self, nickname: str) -> Optional[SendPort]:
        return self._channels.get(nickname)

    def remove_by_channel(self, channel_id: str) -> Optional[str]:
        """
        Remove the entry registered on a channel.

        Returns:
            The removed nickname, or None if no entry used that channel
        """
        nickname = self._nicknames.pop(channel_id, None)
        if nickname is not None:
            del self._channels[nickname]
            logger.debug(f"Removed {nickname} ({channel_id})")
        return nickname

    def nicknames(self) -> List[str]:
        return list(self._channels)

    def channels(self) -> List[SendPort]:
        """Snapshot of all registered channels."""
        return list(self._channels.values())

    def clear(self) -> List[SendPort]:
        """Remove every entry and return the channels that were registered."""
        channels = self.channels()
        self._channels.clear()
        self._nicknames.clear()
        return channels
