"""
Chat Application UI

Terminal user interface for the chat client, built using the Textual
framework. The connection screen collects the node address, room name and
nickname; the chat screen shows received messages and feeds the input box
into the client's send loop.
"""

import asyncio
import logging
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, ScrollableContainer, Vertical
from textual.css.query import NoMatches
from textual.widgets import Button, Footer, Header, Input, Label, Static

from ..chat_client import ChatClient, NicknameRejected
from ..line_source import QueueLineSource
from ..protocol import ChatMessage
from ..service import DiscoveryError, DiscoveryPolicy, JoinError, ServerExited

logger = logging.getLogger(__name__)


class MessageDisplay(Static):
    """Widget for displaying a single chat message."""

    def __init__(
        self,
        nickname: str,
        message_content: str,
        is_own_message: bool = False,
    ) -> None:
        """Initialize message display."""
        super().__init__()
        self.msg_nickname = nickname
        self.msg_content = message_content
        self.is_own_message = is_own_message

    def compose(self) -> ComposeResult:
        """Compose the message display."""
        prefix = "You" if self.is_own_message else self.msg_nickname
        yield Static(
            f"[bold cyan]{prefix}[/]\n{self.msg_content}",
            classes="message-content",
        )


class SystemMessage(Static):
    """Widget for displaying system messages and notifications."""

    def __init__(self, message: str, message_type: str = "info") -> None:
        """Initialize system message display."""
        self.message = message
        self.message_type = message_type
        super().__init__()

    def compose(self) -> ComposeResult:
        """Compose the system message."""
        color = {
            "info": "blue",
            "warning": "yellow",
            "error": "red",
            "success": "green",
        }.get(self.message_type, "white")
        yield Static(f"[{color}]⚡ {self.message}[/]", classes="system-message")


class ConnectionScreen(Container):
    """Screen for choosing the chat server and nickname."""

    def compose(self) -> ComposeResult:
        """Compose the connection screen."""
        yield Static(
            "[bold blue]Chat[/]",
            id="title",
            classes="screen-title",
        )
        yield Static("Enter your details to connect:", classes="subtitle")
        with Vertical(id="connection-form"):
            yield Label("Nickname:")
            yield Input(placeholder="Enter your nickname...", id="nickname-input")
            yield Label("Node Address:")
            yield Input(
                placeholder="host:port (e.g., localhost:8080)",
                id="node-address-input",
            )
            yield Label("Chat Name:")
            yield Input(placeholder="chat", id="chat-name-input")
            yield Button("Connect", id="connect-btn", variant="primary")
        yield Static("", id="connection-status", classes="status-message")


class ChatScreen(Container):
    """Screen for chatting."""

    def compose(self) -> ComposeResult:
        """Compose the chat screen."""
        yield Static("", id="chat-header", classes="chat-header")
        yield ScrollableContainer(id="messages-container")
        with Horizontal(id="message-input-row"):
            yield Input(placeholder="Type a message...", id="message-input")
            yield Button("Send", id="send-btn", variant="primary")
            yield Button("Leave", id="leave-btn", variant="warning")


class ChatApp(App):
    """Main chat application."""

    CSS = """
    Screen {
        layout: vertical;
    }

    .screen-title {
        text-align: center;
        padding: 1 0;
        text-style: bold;
    }

    .subtitle {
        text-align: center;
        padding: 0 0 1 0;
    }

    ConnectionScreen {
        align: center middle;
    }

    #connection-form {
        align: center middle;
        padding: 2;
        width: 60;
        height: auto;
    }

    #connection-form Input {
        margin: 0 0 1 0;
    }

    #connection-form Button {
        margin: 1 0 0 0;
        width: 100%;
    }

    .status-message {
        text-align: center;
        padding: 1;
    }

    ChatScreen {
        height: 100%;
    }

    .chat-header {
        padding: 1;
        background: $surface;
        text-align: center;
    }

    #messages-container {
        height: 1fr;
        padding: 1;
    }

    #message-input-row {
        height: 3;
        padding: 0 1;
    }

    #message-input {
        width: 1fr;
    }

    #message-input-row Button {
        margin: 0 0 0 1;
    }

    MessageDisplay {
        padding: 0 0 1 0;
    }

    .message-content {
        padding: 0 1;
    }

    .own-message .message-content {
        text-align: right;
    }

    SystemMessage {
        padding: 0 0 1 0;
    }

    .system-message {
        text-align: center;
        text-style: italic;
    }
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=True),
        Binding("escape", "go_back", "Back", show=True),
    ]

    def __init__(
        self,
        server: Optional[str] = None,
        chat_name: Optional[str] = None,
        nickname: Optional[str] = None,
        policy: Optional[DiscoveryPolicy] = None,
    ) -> None:
        """Initialize the chat application."""
        super().__init__()
        self.client: Optional[ChatClient] = None
        self.nickname: Optional[str] = nickname
        self.chat_name: Optional[str] = chat_name
        self.server: Optional[str] = server
        self.policy = policy or DiscoveryPolicy(max_attempts=5, backoff=0.5)
        self._current_screen = "connection"
        self._session_task: Optional[asyncio.Task] = None
        self._outbox: Optional[QueueLineSource] = None

    def compose(self) -> ComposeResult:
        """Compose the main application layout."""
        yield Header()
        yield ConnectionScreen(id="connection-screen")
        yield ChatScreen(id="chat-screen")
        yield Footer()

    def on_mount(self) -> None:
        """Fill in defaults and show the connection screen."""
        defaults = {
            "#nickname-input": self.nickname,
            "#node-address-input": self.server,
            "#chat-name-input": self.chat_name,
        }
        for selector, value in defaults.items():
            if value:
                self.query_one(selector, Input).value = value
        self._show_screen("connection")

    def _show_screen(self, screen_name: str) -> None:
        """Show a specific screen and hide others."""
        screens = {
            "connection": "connection-screen",
            "chat": "chat-screen",
        }

        for name, screen_id in screens.items():
            try:
                screen = self.query_one(f"#{screen_id}")
                screen.display = name == screen_name
            except NoMatches:
                pass

        self._current_screen = screen_name

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button press events."""
        button_id = event.button.id

        if button_id == "connect-btn":
            await self._handle_connect()
        elif button_id == "send-btn":
            self._handle_send_message()
        elif button_id == "leave-btn":
            await self._handle_leave()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle input submit events (Enter key)."""
        input_id = event.input.id

        if input_id == "message-input":
            self._handle_send_message()
        elif input_id in ("nickname-input", "node-address-input", "chat-name-input"):
            await self._handle_connect()

    async def _handle_connect(self) -> None:
        """Start a chat session with the details from the form."""
        if self._session_task and not self._session_task.done():
            return

        nickname = self.query_one("#nickname-input", Input).value.strip()
        address = self.query_one("#node-address-input", Input).value.strip()
        chat_name = self.query_one("#chat-name-input", Input).value.strip()
        status = self.query_one("#connection-status", Static)

        if not nickname:
            status.update("[red]Please enter a nickname[/]")
            return
        if not address:
            status.update("[red]Please enter a node address[/]")
            return

        self.nickname = nickname
        self.chat_name = chat_name or "chat"
        self.server = address
        ws_url = address if "://" in address else f"ws://{address}"

        status.update("[yellow]Looking for the chat server...[/]")
        self.client = ChatClient(ws_url)
        self._outbox = QueueLineSource()
        self._session_task = asyncio.create_task(self._run_session())

    async def _run_session(self) -> None:
        """Discover, join and chat until the session ends."""
        status = self.query_one("#connection-status", Static)
        error: Optional[str] = None
        try:
            handle = await self.client.discover_and_link(
                self.chat_name, self.policy
            )
            self._enter_chat()
            await self.client.chat(
                handle, self.nickname, self._outbox, self._on_message_received
            )
        except NicknameRejected as e:
            error = f"{e}. Please choose another nickname."
        except (DiscoveryError, JoinError, ServerExited) as e:
            error = str(e)
        except asyncio.TimeoutError:
            error = "Timed out joining the chat"
        except ConnectionError as e:
            error = f"Connection lost: {e}"
        finally:
            if self.client:
                await self.client.disconnect()
                self.client = None
            await self._clear_messages()
            self._show_screen("connection")

        if error:
            logger.error(f"Chat session ended: {error}")
            status.update(f"[red]{error}[/]")
        else:
            status.update("[yellow]Disconnected[/]")

    def _enter_chat(self) -> None:
        header = self.query_one("#chat-header", Static)
        header.update(f"[bold]{self.chat_name}[/] | {self.nickname}")
        self._show_screen("chat")
        self._add_system_message(f"Joining as {self.nickname}", "success")

    async def _handle_leave(self) -> None:
        """End the session: close the input, which ends the send loop."""
        if self._outbox:
            self._outbox.close()

    def _handle_send_message(self) -> None:
        """Queue the input line for the send loop."""
        if not self._outbox:
            return

        message_input = self.query_one("#message-input", Input)
        content = message_input.value.strip()
        if not content:
            return

        self._outbox.push(content)
        message_input.value = ""

    def _on_message_received(self, message: ChatMessage) -> None:
        """Callback when a chat message arrives on the reply channel."""
        self.call_later(lambda m=message: self._add_chat_message(m))

    def _add_chat_message(self, message: ChatMessage) -> None:
        """Add a chat message to the display."""
        if message.sender.is_server:
            message_type = "error" if message.is_rejection else "info"
            self._add_system_message(message.body, message_type)
            return
        try:
            messages = self.query_one("#messages-container", ScrollableContainer)
            is_own = message.sender.nickname == self.nickname
            msg_widget = MessageDisplay(
                nickname=message.sender.nickname,
                message_content=message.body,
                is_own_message=is_own,
            )
            if is_own:
                msg_widget.add_class("own-message")
            messages.mount(msg_widget)
            messages.scroll_end()
        except NoMatches:
            pass

    def _add_system_message(
        self, message: str, message_type: str = "info"
    ) -> None:
        """Add a system message to the display."""
        try:
            messages = self.query_one("#messages-container", ScrollableContainer)
            messages.mount(SystemMessage(message, message_type))
            messages.scroll_end()
        except NoMatches:
            pass

    async def _clear_messages(self) -> None:
        try:
            messages = self.query_one("#messages-container", ScrollableContainer)
            await messages.remove_children()
        except NoMatches:
            pass

    def action_go_back(self) -> None:
        """Handle back action."""
        if self._current_screen == "chat" and self._outbox:
            self._outbox.close()
