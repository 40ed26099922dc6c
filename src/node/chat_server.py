"""
Chat Server Process

Owns the client registry of one chat room and serializes every change to
it through a single mailbox:
    - join requests (as ChannelCall envelopes carrying the reply channel)
    - chat messages to fan out
    - disconnect notifications from the liveness monitor
"""

import logging

from .channel import SendPort
from .monitor import LivenessMonitor
from .process import Process
from .registry import ClientRegistry
from .schemas import (
    ChatMessage,
    DisconnectNotification,
    DisconnectReason,
    JoinRequest,
    joined_notice,
    left_notice,
    nickname_in_use_notice,
)

logger = logging.getLogger(__name__)


class ChatServer(Process):
    """
    Chat room server process.

    Attributes:
        chat_name: Room name the server is registered under
        registry: Nickname -> reply channel of connected clients
        liveness: Watches on the registered reply channels
    """

    def __init__(self, chat_name: str):
        super().__init__(name=chat_name)
        self.chat_name = chat_name
        self.registry = ClientRegistry()
        self.liveness = LivenessMonitor(self)
        self.handlers = {
            ChatMessage: self.handle_broadcast,
            DisconnectNotification: self.handle_disconnect,
        }
        self.call_handlers = {
            JoinRequest: self.handle_join,
        }

    def handle_join(self, request: JoinRequest, reply_to: SendPort):
        """
        Register a client, or reject it if the nickname is taken.

        A rejected client gets the notice and then its channel is closed.

        Args:
            request: The join request
            reply_to: Reply channel to the joining client
        """
        nickname = request.nickname
        if nickname in self.registry:
            logger.warning(
                f"Rejecting join on {reply_to.channel_id}: "
                f"nickname {nickname} already in use"
            )
            reply_to.send(nickname_in_use_notice(nickname))
            reply_to.close(DisconnectReason.NORMAL)
            return

        self.liveness.watch(reply_to)
        self._broadcast(joined_notice(nickname))
        self.registry.register(nickname, reply_to)
        logger.info(
            f"{nickname} joined {self.chat_name} "
            f"({len(self.registry)} connected)"
        )

    def handle_broadcast(self, message: ChatMessage):
        """Fan a chat message out to every registered client."""
        logger.debug(f"Broadcasting message from {message.sender}")
        self._broadcast(message)

    def handle_disconnect(self, notification: DisconnectNotification):
        """
        Remove the client whose channel was lost and announce it.

        Notifications for unknown channels and non-disconnect reasons leave
        the registry unchanged.
        """
        nickname = self.registry.nickname_for(notification.channel_id)
        if nickname is None:
            logger.debug(
                f"Ignoring disconnect for unknown channel "
                f"{notification.channel_id}"
            )
            return

        if not notification.reason.is_disconnect:
            logger.info(
                f"Channel of {nickname} reported {notification.reason.value}, "
                f"keeping registration"
            )
            return

        self.registry.remove_by_channel(notification.channel_id)
        self.liveness.unwatch(notification.channel_id)
        logger.info(
            f"{nickname} left {self.chat_name} "
            f"({notification.reason.value}, {len(self.registry)} connected)"
        )
        self._broadcast(left_notice(nickname))

    def _broadcast(self, message: ChatMessage):
        for channel in self.registry.channels():
            if not channel.send(message):
                logger.warning(
                    f"Could not deliver to {channel.channel_id}, message dropped"
                )

    def on_exit(self, reason: DisconnectReason):
        self.liveness.clear()
        for channel in self.registry.clear():
            channel.close(DisconnectReason.NORMAL)
