import asyncio
from datetime import timedelta

import pytest  # type: ignore

from timesync.core.notify import (
    ChangeOffset,
    InvalidMessageSequence,
    NotifyChannel,
    NotifyChannelClosed,
)
from timesync.time.offset import Later


def test_notifications_arrive_in_order() -> None:
    asyncio.run(_run_ordering())


async def _run_ordering() -> None:
    channel = NotifyChannel(4)
    sent = [ChangeOffset(Later(timedelta(milliseconds=i))) for i in range(3)]
    sent.insert(1, InvalidMessageSequence())
    for notify in sent:
        await channel.send(notify)

    received = [await channel.recv() for _ in sent]
    assert received == sent


def test_full_channel_applies_backpressure() -> None:
    asyncio.run(_run_backpressure())


async def _run_backpressure() -> None:
    channel = NotifyChannel(1)
    await channel.send(InvalidMessageSequence())

    blocked = asyncio.create_task(channel.send(ChangeOffset(Later(timedelta(0)))))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    assert await channel.recv() == InvalidMessageSequence()
    await asyncio.wait_for(blocked, timeout=1.0)
    assert await channel.recv() == ChangeOffset(Later(timedelta(0)))


def test_closing_wakes_blocked_sender() -> None:
    asyncio.run(_run_close_while_blocked())


async def _run_close_while_blocked() -> None:
    channel = NotifyChannel(1)
    await channel.send(InvalidMessageSequence())
    blocked = asyncio.create_task(channel.send(InvalidMessageSequence()))
    await asyncio.sleep(0.01)

    channel.close()
    with pytest.raises(NotifyChannelClosed):
        await asyncio.wait_for(blocked, timeout=1.0)
    with pytest.raises(NotifyChannelClosed):
        await channel.send(InvalidMessageSequence())


def test_iteration_stops_after_close_and_drain() -> None:
    asyncio.run(_run_iteration())


async def _run_iteration() -> None:
    channel = NotifyChannel(8)
    await channel.send(InvalidMessageSequence())
    await channel.send(InvalidMessageSequence())
    channel.close()

    received = [notify async for notify in channel]
    assert len(received) == 2


def test_close_wakes_waiting_iterator() -> None:
    asyncio.run(_run_close_while_iterating())


async def _run_close_while_iterating() -> None:
    channel = NotifyChannel(8)
    received = []

    async def consume():
        async for notify in channel:
            received.append(notify)

    consumer = asyncio.create_task(consume())
    await channel.send(InvalidMessageSequence())
    await asyncio.sleep(0.01)
    assert len(received) == 1

    # The consumer is now parked on an empty queue.
    channel.close()
    await asyncio.wait_for(consumer, timeout=1.0)
    assert received == [InvalidMessageSequence()]
