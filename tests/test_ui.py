"""
Tests for the Chat Client UI

Tests for the Textual-based user interface components.
"""

import pytest
from textual.widgets import Input

from src.client import DiscoveryPolicy
from src.client.ui.app import (
    ChatApp,
    ConnectionScreen,
    ChatScreen,
    MessageDisplay,
    SystemMessage,
)


class TestUIComponentsCanBeImported:
    """Tests to verify UI components can be imported and created."""

    def test_chat_app_can_be_imported(self):
        """Test that ChatApp can be imported."""
        assert ChatApp is not None

    def test_connection_screen_can_be_imported(self):
        """Test that ConnectionScreen can be imported."""
        assert ConnectionScreen is not None

    def test_chat_screen_can_be_imported(self):
        """Test that ChatScreen can be imported."""
        assert ChatScreen is not None


class TestChatAppInitialization:
    """Tests for ChatApp initialization."""

    def test_chat_app_initial_state(self):
        """Test ChatApp initial state."""
        app = ChatApp()
        assert app.client is None
        assert app.nickname is None
        assert app.chat_name is None
        assert app.server is None
        assert app._current_screen == "connection"
        assert app._session_task is None

    def test_chat_app_keeps_command_line_defaults(self):
        """Test that values given on the command line are kept."""
        policy = DiscoveryPolicy(attempt_timeout=2.0, max_attempts=3)
        app = ChatApp(
            server="localhost:9000",
            chat_name="lobby",
            nickname="alice",
            policy=policy,
        )
        assert app.server == "localhost:9000"
        assert app.chat_name == "lobby"
        assert app.nickname == "alice"
        assert app.policy is policy

    def test_chat_app_has_bindings(self):
        """Test that ChatApp has keybindings defined."""
        app = ChatApp()
        assert len(app.BINDINGS) > 0

    def test_chat_app_has_css(self):
        """Test that ChatApp has CSS defined."""
        assert len(ChatApp.CSS) > 0


class TestMessageDisplayWidget:
    """Tests for MessageDisplay widget."""

    def test_message_display_stores_data(self):
        """Test that MessageDisplay stores message data."""
        msg = MessageDisplay(
            nickname="bob",
            message_content="Hello, World!",
            is_own_message=False,
        )
        assert msg.msg_nickname == "bob"
        assert msg.msg_content == "Hello, World!"
        assert msg.is_own_message is False

    def test_message_display_own_message(self):
        """Test MessageDisplay with own message flag."""
        msg = MessageDisplay(
            nickname="me",
            message_content="My message",
            is_own_message=True,
        )
        assert msg.is_own_message is True


class TestSystemMessageWidget:
    """Tests for SystemMessage widget."""

    def test_system_message_stores_data(self):
        """Test that SystemMessage stores message data."""
        msg = SystemMessage(message="bob has joined", message_type="info")
        assert msg.message == "bob has joined"
        assert msg.message_type == "info"

    def test_system_message_default_type(self):
        """Test SystemMessage default message type."""
        msg = SystemMessage(message="Some notification")
        assert msg.message_type == "info"


class TestConnectionForm:
    """Tests for the connection screen running under Textual's pilot."""

    @pytest.mark.asyncio
    async def test_form_is_prefilled(self):
        """Test that command line values fill the connection form."""
        app = ChatApp(server="localhost:9000", chat_name="lobby", nickname="alice")
        async with app.run_test():
            assert app.query_one("#nickname-input", Input).value == "alice"
            assert app.query_one("#node-address-input", Input).value == (
                "localhost:9000"
            )
            assert app.query_one("#chat-name-input", Input).value == "lobby"
            assert app.query_one("#connection-screen").display
            assert not app.query_one("#chat-screen").display

    @pytest.mark.asyncio
    async def test_connect_requires_nickname(self):
        """Test that connecting without a nickname is refused."""
        app = ChatApp(server="localhost:9000")
        async with app.run_test() as pilot:
            await app._handle_connect()
            await pilot.pause()
            assert app.client is None
            assert app._session_task is None


class TestUIPackageExports:
    """Tests for UI package exports."""

    def test_ui_package_exports_chat_app(self):
        """Test that UI package exports ChatApp."""
        from src.client.ui import ChatApp as ImportedChatApp

        assert ImportedChatApp is ChatApp
