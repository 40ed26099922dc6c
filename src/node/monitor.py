"""
Liveness Monitor

Turns the loss of a watched channel into a DisconnectNotification posted
to the watching process's own mailbox, so disconnects are handled by the
same serialized dispatch loop as every other message.
"""

import logging
from typing import Dict, Tuple

from .channel import SendPort
from .process import Process
from .schemas import DisconnectNotification, DisconnectReason

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """
    Liveness watches held on behalf of one process.

    Attributes:
        owner: Process whose mailbox receives the notifications
    """

    def __init__(self, owner: Process):
        self.owner = owner
        self._watches: Dict[str, Tuple[SendPort, int]] = {}

    def watch(self, channel: SendPort):
        """
        Start watching a channel. Its loss is reported exactly once.

        Args:
            channel: The channel to watch
        """
        if channel.channel_id in self._watches:
            return

        def _on_close(port: SendPort, reason: DisconnectReason):
            self._watches.pop(port.channel_id, None)
            logger.debug(
                f"Channel {port.channel_id} lost ({reason.value}), "
                f"notifying {self.owner.pid}"
            )
            self.owner.send(DisconnectNotification(port.channel_id, reason))

        if channel.closed:
            _on_close(channel, channel.close_reason)
            return
        handle = channel.add_close_callback(_on_close)
        self._watches[channel.channel_id] = (channel, handle)

    def unwatch(self, channel_id: str):
        """Stop watching a channel; no notification is sent for it."""
        entry = self._watches.pop(channel_id, None)
        if entry is not None:
            channel, handle = entry
            channel.remove_close_callback(handle)

    def is_watching(self, channel_id: str) -> bool:
        return channel_id in self._watches

    def clear(self):
        for channel_id in list(self._watches):
            self.unwatch(channel_id)
