import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple, Union

from timesync.core.notify import (
    ChangeOffset,
    InvalidMessageFormat,
    InvalidMessageSequence,
    Io,
    Notify,
    NotifyChannel,
)
from timesync.core.transport import Address, UdpEndpoint, DEFAULT_RECV_BUFFER_SIZE
from timesync.protocol import wire
from timesync.time.offset import TimeOffset, diff, utc_now
from timesync.time.window import OffsetWindow

logger = logging.getLogger(__name__)


@dataclass
class SlaveConfig:
    """Configuration for a slave node."""
    mean_window: int = 64
    notify_channel_size: int = 1024
    recv_buffer_size: int = DEFAULT_RECV_BUFFER_SIZE


@dataclass(frozen=True)
class Cleared:
    pass


@dataclass(frozen=True)
class SyncReceived:
    t1_local: datetime  # local clock when the Sync arrived


@dataclass(frozen=True)
class FollowUpReceived:
    t1_local: datetime
    t1_remote: datetime  # master clock carried by the FollowUp
    t2_local: datetime  # local clock right after the DelayReq left


SlaveState = Union[Cleared, SyncReceived, FollowUpReceived]


def estimate_offset(
    t1_local: datetime,
    t1_remote: datetime,
    t2_local: datetime,
    t2_remote: datetime,
) -> TimeOffset:
    """
    Offset of the local clock against the master from one completed round.

    With skew S and a symmetric one-way delay d the two differences are
    ``S + d`` and ``S - d``; their half-sum cancels the delay.
    """
    forward = diff(t1_local, t1_remote)
    backward = diff(t2_local, t2_remote)
    # Half of the summed differences; halving only the backward one leaves 1.5·S + d/2.
    return (forward + backward) / 2


class Slave:
    """
    Follows a master's beacons and estimates the local clock offset.

    All datagrams are processed sequentially by :meth:`serve`; every completed
    round pushes one sample into the offset window and emits the window mean
    as a :class:`ChangeOffset` notification.
    """

    def __init__(
        self,
        endpoint: UdpEndpoint,
        notify_channel: NotifyChannel,
        mean_window: int = 64,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.endpoint = endpoint
        self.notify_channel = notify_channel
        self.window = OffsetWindow(mean_window)
        self.clock = clock
        self.state: SlaveState = Cleared()

    @classmethod
    def bind(cls, addr: Address, config: Optional[SlaveConfig] = None) -> Tuple["Slave", NotifyChannel]:
        """Bind a broadcast-capable socket and return the slave with its notification channel."""
        config = config or SlaveConfig()
        endpoint = UdpEndpoint.bind(addr, recv_buffer_size=config.recv_buffer_size)
        channel = NotifyChannel(config.notify_channel_size)
        return cls(endpoint, channel, mean_window=config.mean_window), channel

    async def serve(self) -> None:
        """Run until the notification consumer goes away.

        Raises :class:`NotifyChannelClosed` when that happens; every other
        error is reported through the channel and the loop continues.
        """
        logger.info("start timesync slave")
        while True:
            try:
                data, source = await self.endpoint.recv_from()
            except OSError as e:
                logger.warning(f"general io: {e}")
                await self._notify(Io(e))
                continue
            await self.handle_datagram(data, source)

    async def handle_datagram(self, data: bytes, source: Address) -> None:
        """Process one datagram: decode, advance the state machine, notify."""
        try:
            message = wire.decode_master(data)
        except wire.DecodeError as e:
            logger.warning(f"invalid data from {source}: {e}")
            await self._notify(InvalidMessageFormat(e))
            return

        logger.debug(f"msg: {message}, state: {self.state}")
        if isinstance(message, wire.Sync):
            await self._on_sync()
        elif isinstance(message, wire.FollowUp):
            await self._on_follow_up(message, source)
        else:
            await self._on_delay_resp(message)

    async def _on_sync(self) -> None:
        if isinstance(self.state, Cleared):
            self.state = SyncReceived(t1_local=self.clock())
            return
        logger.warning("invalid message sequence (sync)")
        await self._reset_with_violation()

    async def _on_follow_up(self, message: wire.FollowUp, source: Address) -> None:
        state = self.state
        if not isinstance(state, SyncReceived):
            logger.warning("invalid message sequence (followup)")
            await self._reset_with_violation()
            return

        logger.debug(f"followup master: {message.t1}, local: {state.t1_local}")
        try:
            await self.endpoint.send_to(wire.encode(wire.DelayReq()), source)
        except OSError as e:
            logger.warning(f"send DelayReq to {source}: {e}")
            await self._notify(Io(e))
        self.state = FollowUpReceived(
            t1_local=state.t1_local,
            t1_remote=message.t1,
            t2_local=self.clock(),
        )

    async def _on_delay_resp(self, message: wire.DelayResp) -> None:
        state = self.state
        self.state = Cleared()
        if not isinstance(state, FollowUpReceived):
            logger.warning("invalid message sequence (delay_resp)")
            await self._notify(InvalidMessageSequence())
            return

        offset = estimate_offset(state.t1_local, state.t1_remote, state.t2_local, message.t2)
        logger.debug(f"t1  {state.t1_remote}")
        logger.debug(f"t1' {state.t1_local}")
        logger.debug(f"t2  {state.t2_local}")
        logger.debug(f"t2' {message.t2}")
        logger.debug(f"offset: {offset}")

        mean = self.window.push(offset)
        logger.debug(f"mean-offset: {mean} / sample: {len(self.window)}")
        await self._notify(ChangeOffset(mean))

    async def _reset_with_violation(self) -> None:
        self.state = Cleared()
        await self._notify(InvalidMessageSequence())

    async def _notify(self, notify: Notify) -> None:
        await self.notify_channel.send(notify)

    def close(self) -> None:
        self.endpoint.close()
