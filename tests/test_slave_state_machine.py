import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import List

import pytest  # type: ignore

from timesync.core.notify import (
    ChangeOffset,
    InvalidMessageFormat,
    InvalidMessageSequence,
    Io,
    NotifyChannel,
    NotifyChannelClosed,
)
from timesync.core.slave import Cleared, FollowUpReceived, Slave, SyncReceived
from timesync.protocol import wire
from timesync.time.offset import Later

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
MASTER = ("10.0.0.1", 13001)


class _FakeEndpoint:
    def __init__(self, fail_send: bool = False):
        self.fail_send = fail_send
        self.sent = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.local_address = ("127.0.0.1", 13001)

    async def recv_from(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send_to(self, data: bytes, addr):
        if self.fail_send:
            raise OSError("network is unreachable")
        self.sent.append((data, addr))
        return len(data)

    def close(self) -> None:
        pass


class _ManualClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _drain(channel: NotifyChannel) -> List:
    events = []
    while True:
        try:
            events.append(channel.recv_nowait())
        except asyncio.QueueEmpty:
            return events


def _make_slave(state=None, fail_send: bool = False, mean_window: int = 64):
    endpoint = _FakeEndpoint(fail_send=fail_send)
    channel = NotifyChannel(16)
    slave = Slave(endpoint, channel, mean_window=mean_window, clock=_ManualClock())
    if state is not None:
        slave.state = state
    return slave, endpoint, channel


STATES = {
    "cleared": Cleared(),
    "sync_received": SyncReceived(t1_local=T0),
    "follow_up_received": FollowUpReceived(t1_local=T0, t1_remote=T0, t2_local=T0),
}

MESSAGES = {
    "sync": wire.Sync(),
    "follow_up": wire.FollowUp(T0),
    "delay_resp": wire.DelayResp(T0),
}

# (state, message) -> (next state type, notification types)
TRANSITIONS = {
    ("cleared", "sync"): (SyncReceived, []),
    ("cleared", "follow_up"): (Cleared, [InvalidMessageSequence]),
    ("cleared", "delay_resp"): (Cleared, [InvalidMessageSequence]),
    ("sync_received", "sync"): (Cleared, [InvalidMessageSequence]),
    ("sync_received", "follow_up"): (FollowUpReceived, []),
    ("sync_received", "delay_resp"): (Cleared, [InvalidMessageSequence]),
    ("follow_up_received", "sync"): (Cleared, [InvalidMessageSequence]),
    ("follow_up_received", "follow_up"): (Cleared, [InvalidMessageSequence]),
    ("follow_up_received", "delay_resp"): (Cleared, [ChangeOffset]),
}


def test_transition_table_is_exhaustive() -> None:
    assert set(TRANSITIONS) == {(s, m) for s in STATES for m in MESSAGES}


@pytest.mark.parametrize("state_name,message_name", sorted(TRANSITIONS))
def test_transition(state_name: str, message_name: str) -> None:
    asyncio.run(_run_transition(state_name, message_name))


async def _run_transition(state_name: str, message_name: str) -> None:
    slave, endpoint, channel = _make_slave(STATES[state_name])
    await slave.handle_datagram(wire.encode(MESSAGES[message_name]), MASTER)

    next_state, notifications = TRANSITIONS[(state_name, message_name)]
    assert isinstance(slave.state, next_state)
    assert [type(n) for n in _drain(channel)] == notifications

    if (state_name, message_name) == ("sync_received", "follow_up"):
        assert endpoint.sent == [(wire.encode(wire.DelayReq()), MASTER)]
    else:
        assert endpoint.sent == []


def test_follow_up_first_is_a_sequence_violation() -> None:
    asyncio.run(_run_follow_up_first())


async def _run_follow_up_first() -> None:
    slave, _, channel = _make_slave()
    await slave.handle_datagram(wire.encode(wire.FollowUp(T0)), MASTER)

    events = _drain(channel)
    assert events == [InvalidMessageSequence()]
    assert slave.state == Cleared()
    assert len(slave.window) == 0


def test_random_bytes_leave_state_untouched() -> None:
    asyncio.run(_run_random_bytes())


async def _run_random_bytes() -> None:
    in_flight = SyncReceived(t1_local=T0)
    slave, _, channel = _make_slave(in_flight)
    garbage = random.Random(1234).randbytes(5)

    await slave.handle_datagram(garbage, MASTER)

    events = _drain(channel)
    assert len(events) == 1
    assert isinstance(events[0], InvalidMessageFormat)
    assert isinstance(events[0].error, wire.DecodeError)
    assert slave.state == in_flight


def test_completed_round_records_timestamps_and_emits_mean() -> None:
    asyncio.run(_run_completed_round())


async def _run_completed_round() -> None:
    slave, endpoint, channel = _make_slave()
    clock = slave.clock

    clock.now = T0 + timedelta(milliseconds=110)
    await slave.handle_datagram(wire.encode(wire.Sync()), MASTER)
    assert slave.state == SyncReceived(t1_local=clock.now)

    clock.now = T0 + timedelta(milliseconds=130)
    await slave.handle_datagram(wire.encode(wire.FollowUp(T0)), MASTER)
    assert slave.state == FollowUpReceived(
        t1_local=T0 + timedelta(milliseconds=110),
        t1_remote=T0,
        t2_local=T0 + timedelta(milliseconds=130),
    )

    # Master received the DelayReq 10ms after it left, by the master's clock
    # that is 130ms - 100ms skew + 10ms = 40ms after T0.
    await slave.handle_datagram(wire.encode(wire.DelayResp(T0 + timedelta(milliseconds=40))), MASTER)

    assert slave.state == Cleared()
    assert _drain(channel) == [ChangeOffset(Later(timedelta(milliseconds=100)))]
    assert len(endpoint.sent) == 1


def test_failed_delay_req_send_is_reported_and_round_continues() -> None:
    asyncio.run(_run_failed_send())


async def _run_failed_send() -> None:
    slave, _, channel = _make_slave(SyncReceived(t1_local=T0), fail_send=True)
    await slave.handle_datagram(wire.encode(wire.FollowUp(T0)), MASTER)

    events = _drain(channel)
    assert len(events) == 1
    assert isinstance(events[0], Io)
    assert isinstance(slave.state, FollowUpReceived)


def test_serve_reports_io_errors_and_stops_when_consumer_closes() -> None:
    asyncio.run(_run_serve_until_closed())


async def _run_serve_until_closed() -> None:
    slave, endpoint, channel = _make_slave()
    endpoint.inbox.put_nowait(ConnectionResetError("reset by peer"))
    endpoint.inbox.put_nowait((wire.encode(wire.Sync()), MASTER))

    serve = asyncio.create_task(slave.serve())
    first = await asyncio.wait_for(channel.recv(), timeout=1.0)
    assert isinstance(first, Io)
    assert isinstance(first.error, ConnectionResetError)

    channel.close()
    endpoint.inbox.put_nowait((b"junk", MASTER))
    with pytest.raises(NotifyChannelClosed) as excinfo:
        await asyncio.wait_for(serve, timeout=1.0)
    assert isinstance(excinfo.value.notify, InvalidMessageFormat)
    assert isinstance(slave.state, SyncReceived)
