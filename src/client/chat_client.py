"""
Chat Client

This module provides a ChatClient class that extends the base ClientService
with the chat session itself: after the join handshake, a receive loop
renders messages arriving on the reply channel while a send loop casts the
user's input lines to the server. Both loops run concurrently, and the
session also ends when the linked server exits.

Usage:
    client = ChatClient("ws://localhost:8080")
    handle = await client.discover("chat")
    await client.chat(handle, "alice", lines, print)
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .protocol import ChatMessage, Sender
from .service import (
    ChannelReceiver,
    ClientService,
    DEFAULT_JOIN_TIMEOUT,
    DiscoveryPolicy,
    ServerExited,
    ServerHandle,
)

logger = logging.getLogger(__name__)

Renderer = Callable[[ChatMessage], None]


class NicknameRejected(Exception):
    """Raised when the server refuses the nickname because it is taken."""

    def __init__(self, nickname: str, notice: str):
        super().__init__(notice)
        self.nickname = nickname


def format_message(message: ChatMessage) -> str:
    """Render a chat message as a single line of text."""
    if message.sender.is_server:
        return f"* {message.body}"
    return f"{message.sender.nickname}: {message.body}"


class ChatClient(ClientService):
    """
    Chat client running one session against a chat server.

    Attributes:
        nickname: Nickname of the current session, None before joining
    """

    def __init__(self, node_url: str, websocket_factory=None, connect_kwargs=None):
        super().__init__(node_url, websocket_factory, connect_kwargs)
        self.nickname: Optional[str] = None
        logger.info(f"ChatClient initialized for node: {node_url}")

    async def discover_and_link(
        self,
        chat_name: str,
        policy: Optional[DiscoveryPolicy] = None,
    ) -> ServerHandle:
        """Discover the server and link to it so its exit ends the session."""
        handle = await self.discover(chat_name, policy)
        await self.link(handle)
        return handle

    async def receive_loop(
        self,
        receiver: ChannelReceiver,
        render: Renderer,
    ) -> None:
        """
        Render each message arriving on the reply channel until it closes.

        Raises:
            NicknameRejected: After rendering the server's rejection notice
        """
        async for message in receiver:
            render(message)
            if message.is_rejection:
                self.release(receiver)
                raise NicknameRejected(self.nickname, message.body)
        logger.warning(f"Channel {receiver.channel_id} closed")

    async def send_loop(
        self,
        handle: ServerHandle,
        nickname: str,
        lines: AsyncIterator[str],
    ) -> None:
        """Cast every non-blank input line to the server until input ends."""
        async for line in lines:
            body = line.rstrip("\r\n")
            if not body.strip():
                continue
            await self.cast(handle, ChatMessage(Sender.client(nickname), body))
        logger.info("Input ended")

    async def chat(
        self,
        handle: ServerHandle,
        nickname: str,
        lines: AsyncIterator[str],
        render: Renderer,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
    ) -> None:
        """
        Join under `nickname` and run the receive and send loops.

        Returns when input ends or the channel closes.

        Raises:
            NicknameRejected: If the nickname is already in use
            ServerExited: If the linked server exits
        """
        self.nickname = nickname
        receiver = await self.join(handle, nickname, timeout=join_timeout)
        link = await self.link(handle)

        receive_task = asyncio.create_task(self.receive_loop(receiver, render))
        send_task = asyncio.create_task(self.send_loop(handle, nickname, lines))
        tasks = {receive_task, send_task, link}
        try:
            done, _ = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (receive_task, send_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(receive_task, send_task, return_exceptions=True)

        if link in done:
            raise ServerExited(link.result())
        for task in (receive_task, send_task):
            if task in done and task.exception() is not None:
                raise task.exception()
