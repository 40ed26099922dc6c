"""
Tests for Client Service

Tests for the client's connection to a node, driven by a scripted mock
WebSocket injected through websocket_factory:
- Discovery with per-attempt timeouts and retries
- Link and exit notifications
- Join handshake and the reply channel
- The ChatClient session loops
"""

import asyncio
import json

import pytest
import websockets
import websockets.exceptions

from src.client import (
    ChatClient,
    ChatMessage,
    ChannelClosed,
    ClientService,
    DiscoveryError,
    DiscoveryPolicy,
    JoinError,
    NicknameRejected,
    QueueLineSource,
    Sender,
    ServerExited,
    ServerHandle,
    format_message,
)

PID = "<chat.0001>"
HANDLE = ServerHandle("chat", PID)


class ScriptedWebSocket:
    """
    Mock WebSocket standing in for a node.

    Every frame the client sends is recorded and passed to `respond`, whose
    returned frames are delivered back to the client in order.
    """

    _EOF = object()

    def __init__(self, respond=None):
        self.sent_messages = []
        self.closed = False
        self._respond = respond or (lambda frame: [])
        self._inbox = asyncio.Queue()

    def sent(self, frame_type):
        return [f for f in self.sent_messages if f["type"] == frame_type]

    def push(self, frame):
        self._inbox.put_nowait(json.dumps(frame))

    def drop(self):
        """Simulate the node going away."""
        self.closed = True
        self._inbox.put_nowait(self._EOF)

    async def send(self, message):
        if self.closed:
            raise websockets.exceptions.ConnectionClosed(None, None)
        frame = json.loads(message)
        self.sent_messages.append(frame)
        for reply in self._respond(frame) or []:
            self.push(reply)

    async def close(self):
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is self._EOF:
            raise websockets.exceptions.ConnectionClosed(None, None)
        return item


def factory_for(websocket):
    calls = []

    async def factory(url, **kwargs):
        calls.append((url, kwargs))
        return websocket

    factory.calls = calls
    return factory


def whereis_reply(frame, pid=PID):
    data = frame["data"]
    return {
        "type": "whereis_reply",
        "data": {"ref": data["ref"], "name": data["name"], "pid": pid},
    }


def join_reply(frame, channel_id="ch-1"):
    return {
        "type": "join_reply",
        "data": {"ref": frame["data"]["ref"], "channel_id": channel_id},
    }


def channel_message(body, nickname=None, channel_id="ch-1"):
    sender = {"kind": "server"} if nickname is None else {
        "kind": "client",
        "nickname": nickname,
    }
    return {
        "type": "chat_message",
        "data": {"channel_id": channel_id, "from": sender, "body": body},
    }


def simple_node(frame):
    """A node with one chat server that echoes chat messages back."""
    if frame["type"] == "whereis":
        return [whereis_reply(frame)]
    if frame["type"] == "join_request":
        return [join_reply(frame)]
    if frame["type"] == "chat_message":
        data = frame["data"]
        return [channel_message(data["body"], data["from"]["nickname"])]
    return []


async def connected(service_class=ClientService, respond=simple_node):
    websocket = ScriptedWebSocket(respond)
    service = service_class(
        "ws://localhost:8080", websocket_factory=factory_for(websocket)
    )
    await service.connect()
    return service, websocket


async def eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


# ----------------------------------------------------------------------------
# Basics
# ----------------------------------------------------------------------------

def test_client_service_can_be_instantiated():
    """Test that ClientService can be instantiated."""
    service = ClientService(node_url="ws://localhost:8000")
    assert service.node_url == "ws://localhost:8000"
    assert not service.is_connected


@pytest.mark.asyncio
async def test_connect_passes_connect_kwargs():
    websocket = ScriptedWebSocket()
    factory = factory_for(websocket)
    service = ClientService(
        "ws://localhost:8080",
        websocket_factory=factory,
        connect_kwargs={"local_addr": ("127.0.0.1", 9000)},
    )

    await service.connect()

    assert service.is_connected
    assert factory.calls == [
        ("ws://localhost:8080", {"local_addr": ("127.0.0.1", 9000)})
    ]
    await service.disconnect()
    assert not service.is_connected


@pytest.mark.asyncio
async def test_connect_failure_raises_connection_error():
    async def failing_factory(url, **kwargs):
        raise OSError("connection refused")

    service = ClientService("ws://localhost:1", websocket_factory=failing_factory)
    with pytest.raises(ConnectionError):
        await service.connect()


@pytest.mark.parametrize(
    "backoff, expected",
    [
        (0.0, [0.0, 0.0, 0.0]),
        (0.5, [0.5, 1.0, 2.0]),
        (2.0, [2.0, 4.0, 5.0]),
    ],
)
def test_discovery_policy_delay(backoff, expected):
    policy = DiscoveryPolicy(backoff=backoff, max_backoff=5.0)
    assert [policy.delay(n) for n in (1, 2, 3)] == expected


@pytest.mark.parametrize("attempt", [33, 1025, 1026, 5000, 10**6])
def test_discovery_delay_stays_capped_on_long_waits(attempt):
    policy = DiscoveryPolicy(backoff=0.5, max_backoff=5.0)
    assert policy.delay(attempt) == 5.0


# ----------------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_discover_resolves_server():
    websocket = ScriptedWebSocket(simple_node)
    service = ClientService("ws://node", websocket_factory=factory_for(websocket))

    handle = await service.discover("chat")

    assert handle == HANDLE
    assert websocket.sent("whereis")[0]["data"]["name"] == "chat"


@pytest.mark.asyncio
async def test_discover_retries_until_registered():
    misses = {"left": 2}

    def node(frame):
        if misses["left"]:
            misses["left"] -= 1
            return [whereis_reply(frame, pid=None)]
        return [whereis_reply(frame)]

    websocket = ScriptedWebSocket(node)
    service = ClientService("ws://node", websocket_factory=factory_for(websocket))

    handle = await service.discover("chat", DiscoveryPolicy(attempt_timeout=0.5))

    assert handle.pid == PID
    assert len(websocket.sent("whereis")) == 3


@pytest.mark.asyncio
async def test_unanswered_lookup_times_out_each_attempt():
    websocket = ScriptedWebSocket(lambda frame: [])
    service = ClientService("ws://node", websocket_factory=factory_for(websocket))
    policy = DiscoveryPolicy(attempt_timeout=0.05, max_attempts=3)

    with pytest.raises(DiscoveryError):
        await asyncio.wait_for(service.discover("chat", policy), 2)

    assert len(websocket.sent("whereis")) == 3


@pytest.mark.asyncio
async def test_unreachable_node_is_retried_then_gives_up():
    calls = []

    async def failing_factory(url, **kwargs):
        calls.append(url)
        raise OSError("connection refused")

    service = ClientService("ws://node", websocket_factory=failing_factory)
    policy = DiscoveryPolicy(attempt_timeout=0.1, max_attempts=4)

    with pytest.raises(DiscoveryError, match="after 4 attempts"):
        await service.discover("chat", policy)
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_refused_lookup_is_not_retried():
    def node(frame):
        return [
            {
                "type": "error",
                "data": {
                    "ref": frame["data"]["ref"],
                    "message": "Missing name",
                    "error_code": "invalid_request",
                },
            }
        ]

    websocket = ScriptedWebSocket(node)
    service = ClientService("ws://node", websocket_factory=factory_for(websocket))

    with pytest.raises(DiscoveryError, match="refused"):
        await service.discover("chat", DiscoveryPolicy(max_attempts=5))
    assert len(websocket.sent("whereis")) == 1


# ----------------------------------------------------------------------------
# Link / join / cast
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_link_resolves_on_exit_frame():
    service, websocket = await connected()

    link = await service.link(HANDLE)
    assert websocket.sent("link") == [{"type": "link", "data": {"pid": PID}}]
    assert not link.done()

    websocket.push({"type": "exit", "data": {"pid": PID, "reason": "normal"}})
    assert await asyncio.wait_for(link, 1) == "normal"


@pytest.mark.asyncio
async def test_link_twice_sends_one_request():
    service, websocket = await connected()

    first = await service.link(HANDLE)
    second = await service.link(HANDLE)

    assert first is second
    assert len(websocket.sent("link")) == 1


@pytest.mark.asyncio
async def test_join_returns_channel_with_messages_following_reply():
    def node(frame):
        if frame["type"] == "join_request":
            return [join_reply(frame), channel_message("bob has joined")]
        return []

    service, websocket = await connected(respond=node)

    receiver = await service.join(HANDLE, "alice")

    assert receiver.channel_id == "ch-1"
    assert websocket.sent("join_request")[0]["data"]["nickname"] == "alice"
    assert websocket.sent("join_request")[0]["data"]["to"] == PID
    message = await asyncio.wait_for(receiver.receive(), 1)
    assert message == ChatMessage(Sender.server(), "bob has joined")


@pytest.mark.asyncio
async def test_released_channel_ignores_late_messages():
    service, websocket = await connected(respond=lambda frame: [join_reply(frame)])
    receiver = await service.join(HANDLE, "alice")

    service.release(receiver)
    websocket.push(channel_message("too late"))
    await asyncio.sleep(0.05)

    assert service._channels == {}
    with pytest.raises(ChannelClosed):
        await asyncio.wait_for(receiver.receive(), 1)


@pytest.mark.asyncio
async def test_join_refused_raises_join_error():
    def node(frame):
        return [
            {
                "type": "error",
                "data": {
                    "ref": frame["data"]["ref"],
                    "message": "Nickname cannot contain whitespace",
                    "error_code": "invalid_request",
                },
            }
        ]

    service, _ = await connected(respond=node)

    with pytest.raises(JoinError, match="whitespace"):
        await service.join(HANDLE, "a b")


@pytest.mark.asyncio
async def test_join_to_dead_server_raises_server_exited():
    def node(frame):
        return [
            {
                "type": "error",
                "data": {
                    "ref": frame["data"]["ref"],
                    "message": f"No such process: {PID}",
                    "error_code": "noproc",
                },
            }
        ]

    service, _ = await connected(respond=node)

    with pytest.raises(ServerExited) as exc_info:
        await service.join(HANDLE, "alice")
    assert exc_info.value.reason == "noproc"


@pytest.mark.asyncio
async def test_server_exit_during_handshake_aborts_join():
    def node(frame):
        if frame["type"] == "join_request":
            return [{"type": "exit", "data": {"pid": PID, "reason": "exception"}}]
        return []

    service, _ = await connected(respond=node)
    await service.link(HANDLE)

    with pytest.raises(ServerExited) as exc_info:
        await service.join(HANDLE, "alice", timeout=1)
    assert exc_info.value.reason == "exception"


@pytest.mark.asyncio
async def test_join_times_out_without_reply():
    service, _ = await connected(respond=lambda frame: [])

    with pytest.raises(asyncio.TimeoutError):
        await service.join(HANDLE, "alice", timeout=0.05)


@pytest.mark.asyncio
async def test_cast_sends_chat_message_frame():
    service, websocket = await connected()

    await service.cast(HANDLE, ChatMessage(Sender.client("alice"), "hi"))

    assert websocket.sent("chat_message")[0] == {
        "type": "chat_message",
        "data": {
            "to": PID,
            "from": {"kind": "client", "nickname": "alice"},
            "body": "hi",
        },
    }


@pytest.mark.asyncio
async def test_cast_on_closed_connection_raises():
    service, websocket = await connected()
    websocket.closed = True

    with pytest.raises(ConnectionError):
        await service.cast(HANDLE, ChatMessage(Sender.client("alice"), "hi"))


@pytest.mark.asyncio
async def test_connection_loss_closes_channels_and_links():
    service, websocket = await connected()
    receiver = await service.join(HANDLE, "alice")
    link = await service.link(HANDLE)

    websocket.drop()

    assert [m async for m in receiver] == []
    assert await asyncio.wait_for(link, 1) == "connection lost"
    assert not service.is_connected


@pytest.mark.asyncio
async def test_malformed_frames_are_skipped():
    service, websocket = await connected()
    receiver = await service.join(HANDLE, "alice")

    websocket._inbox.put_nowait("{broken")
    websocket.push({"type": "mystery", "data": {}})
    websocket.push(channel_message("still here"))

    message = await asyncio.wait_for(receiver.receive(), 1)
    assert message.body == "still here"
    assert service.is_connected


# ----------------------------------------------------------------------------
# ChatClient
# ----------------------------------------------------------------------------

def test_format_message():
    assert format_message(ChatMessage(Sender.server(), "bob has joined")) == (
        "* bob has joined"
    )
    assert format_message(ChatMessage(Sender.client("bob"), "hi")) == "bob: hi"


@pytest.mark.asyncio
async def test_chat_session_sends_and_renders():
    client, websocket = await connected(ChatClient)
    lines = QueueLineSource()
    rendered = []

    session = asyncio.create_task(client.chat(HANDLE, "alice", lines, rendered.append))
    lines.push("hello")
    lines.push("   ")
    lines.push("world\n")
    await eventually(lambda: len(rendered) == 2)
    lines.close()
    await asyncio.wait_for(session, 1)

    assert [format_message(m) for m in rendered] == ["alice: hello", "alice: world"]
    assert [f["data"]["body"] for f in websocket.sent("chat_message")] == [
        "hello",
        "world",
    ]
    assert client.nickname == "alice"


@pytest.mark.asyncio
async def test_chat_rejected_nickname_raises():
    def node(frame):
        if frame["type"] == "join_request":
            return [
                join_reply(frame),
                channel_message("nickname already in use: alice"),
            ]
        return []

    client, _ = await connected(ChatClient, respond=node)
    rendered = []

    with pytest.raises(NicknameRejected) as exc_info:
        await asyncio.wait_for(
            client.chat(HANDLE, "alice", QueueLineSource(), rendered.append), 1
        )

    assert exc_info.value.nickname == "alice"
    assert rendered[0].body.startswith("nickname already in use")
    assert client._channels == {}


@pytest.mark.asyncio
async def test_chat_ends_when_server_exits():
    client, websocket = await connected(ChatClient)
    session = asyncio.create_task(
        client.chat(HANDLE, "alice", QueueLineSource(), lambda m: None)
    )
    await eventually(lambda: websocket.sent("link"))

    websocket.push({"type": "exit", "data": {"pid": PID, "reason": "normal"}})

    with pytest.raises(ServerExited):
        await asyncio.wait_for(session, 1)


@pytest.mark.asyncio
async def test_chat_ends_when_connection_drops():
    client, websocket = await connected(ChatClient)
    session = asyncio.create_task(
        client.chat(HANDLE, "alice", QueueLineSource(), lambda m: None)
    )
    await eventually(lambda: websocket.sent("link"))

    websocket.drop()

    with pytest.raises(ServerExited) as exc_info:
        await asyncio.wait_for(session, 1)
    assert exc_info.value.reason == "connection lost"
