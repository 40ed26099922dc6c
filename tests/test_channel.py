"""
Tests for Reply Channels

Tests for the in-process channel pair:
- FIFO delivery and draining after close
- Non-blocking sends that drop when the buffer is full
- Close callbacks running exactly once
"""

import asyncio

import pytest

from src.node.channel import ChannelClosed, new_channel
from src.node.schemas import DisconnectReason


@pytest.mark.asyncio
async def test_messages_arrive_in_send_order():
    tx, rx = new_channel()
    for i in range(5):
        assert tx.send(f"m{i}") is True

    received = [await rx.receive() for _ in range(5)]
    assert received == ["m0", "m1", "m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_receive_drains_queued_messages_before_reporting_close():
    tx, rx = new_channel()
    tx.send("last words")
    tx.close(DisconnectReason.NORMAL)

    assert await rx.receive() == "last words"
    with pytest.raises(ChannelClosed) as exc_info:
        await rx.receive()
    assert exc_info.value.reason is DisconnectReason.NORMAL

    # Still closed on later receives
    with pytest.raises(ChannelClosed):
        await rx.receive()


@pytest.mark.asyncio
async def test_async_iteration_stops_when_closed():
    tx, rx = new_channel()
    tx.send("a")
    tx.send("b")
    tx.close()

    assert [message async for message in rx] == ["a", "b"]


@pytest.mark.asyncio
async def test_blocked_receiver_wakes_on_close():
    tx, rx = new_channel()
    waiter = asyncio.create_task(rx.receive())
    await asyncio.sleep(0)

    tx.close(DisconnectReason.DISCONNECT)
    with pytest.raises(ChannelClosed):
        await asyncio.wait_for(waiter, 1)


def test_send_on_closed_channel_is_dropped():
    tx, _ = new_channel()
    tx.close()
    assert tx.send("ignored") is False


def test_full_buffer_drops_instead_of_blocking():
    tx, rx = new_channel(maxsize=2)
    assert tx.send(1) is True
    assert tx.send(2) is True
    assert tx.send(3) is False
    assert rx._queue.qsize() == 2


def test_close_callbacks_run_once_with_first_reason():
    tx, _ = new_channel()
    calls = []
    tx.add_close_callback(lambda port, reason: calls.append((port, reason)))

    tx.close(DisconnectReason.DISCONNECT)
    tx.close(DisconnectReason.NORMAL)

    assert calls == [(tx, DisconnectReason.DISCONNECT)]
    assert tx.close_reason is DisconnectReason.DISCONNECT


def test_callback_added_after_close_runs_immediately():
    tx, _ = new_channel()
    tx.close(DisconnectReason.NODE_DOWN)

    calls = []
    tx.add_close_callback(lambda port, reason: calls.append(reason))
    assert calls == [DisconnectReason.NODE_DOWN]


def test_removed_callback_is_not_run():
    tx, _ = new_channel()
    calls = []
    handle = tx.add_close_callback(lambda port, reason: calls.append(reason))
    tx.remove_close_callback(handle)

    tx.close()
    assert calls == []


def test_receiver_close_reports_disconnect():
    tx, rx = new_channel()
    rx.close()
    assert tx.closed
    assert tx.close_reason is DisconnectReason.DISCONNECT


def test_channels_have_distinct_ids():
    tx1, rx1 = new_channel()
    tx2, _ = new_channel()
    assert tx1.channel_id != tx2.channel_id
    assert rx1.channel_id == tx1.channel_id
