import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from timesync.core.transport import Address, UdpEndpoint, DEFAULT_RECV_BUFFER_SIZE
from timesync.protocol import wire
from timesync.time.offset import utc_now

logger = logging.getLogger(__name__)

DEFAULT_PORT = 13001


@dataclass
class MasterConfig:
    """Configuration for the time reference node."""
    sync_period: float = 0.5  # seconds between beacons
    target: Address = ("255.255.255.255", DEFAULT_PORT)
    recv_buffer_size: int = DEFAULT_RECV_BUFFER_SIZE


class Master:
    """
    Time reference: broadcasts Sync/FollowUp beacons and answers DelayReq
    requests with its own receive timestamp.

    The beacon loop and the responder loop run as two tasks sharing one
    endpoint. No per-peer state is kept; round bookkeeping is the slaves' job.
    """

    def __init__(
        self,
        endpoint: UdpEndpoint,
        config: Optional[MasterConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.endpoint = endpoint
        self.config = config or MasterConfig()
        self.clock = clock

        # Statistics
        self.beacons_sent = 0
        self.delay_requests_answered = 0
        self.send_errors = 0
        self.recv_errors = 0
        self.decode_errors = 0
        self.started_at: Optional[float] = None

    @classmethod
    def bind(cls, addr: Address, config: Optional[MasterConfig] = None) -> "Master":
        config = config or MasterConfig()
        endpoint = UdpEndpoint.bind(addr, recv_buffer_size=config.recv_buffer_size)
        return cls(endpoint, config)

    async def serve(self) -> None:
        """Run the beacon loop in the background and answer delay requests forever."""
        logger.info(f"start timesync master, target={self.config.target}, "
                    f"period={self.config.sync_period}s")
        self.started_at = time.time()
        beacon_task = asyncio.create_task(self.beacon_loop())
        try:
            await self.respond_loop()
        finally:
            beacon_task.cancel()
            await asyncio.gather(beacon_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Beacons
    # ------------------------------------------------------------------
    async def beacon_loop(self) -> None:
        period = self.config.sync_period
        elapsed = period
        while True:
            if elapsed < period:
                await asyncio.sleep(period - elapsed)
            started = time.monotonic()
            await self.send_beacon()
            elapsed = time.monotonic() - started

    async def send_beacon(self) -> None:
        """Broadcast one Sync followed by a FollowUp carrying the send time."""
        target = self.config.target
        try:
            await self.endpoint.send_to(wire.encode(wire.Sync()), target)
        except OSError as e:
            self.send_errors += 1
            logger.warning(f"Send sync {e}")

        t1 = self.clock()
        try:
            await self.endpoint.send_to(wire.encode(wire.FollowUp(t1)), target)
        except OSError as e:
            self.send_errors += 1
            logger.warning(f"Send FollowUp {e}")
            return
        self.beacons_sent += 1

    # ------------------------------------------------------------------
    # Delay requests
    # ------------------------------------------------------------------
    async def respond_loop(self) -> None:
        while True:
            try:
                data, source = await self.endpoint.recv_from()
            except OSError as e:
                self.recv_errors += 1
                logger.warning(f"Recv: {e}")
                continue
            await self.handle_datagram(data, source)

    async def handle_datagram(self, data: bytes, source: Address) -> None:
        try:
            wire.decode_slave(data)
        except wire.DecodeError as e:
            self.decode_errors += 1
            logger.warning(f"Invalid message from {source}: {e}")
            return

        response = wire.encode(wire.DelayResp(self.clock()))
        try:
            await self.endpoint.send_to(response, source)
        except OSError as e:
            self.send_errors += 1
            logger.warning(f"Response DelayReq to {source}: {e}")
            return
        self.delay_requests_answered += 1

    def get_status(self) -> Dict:
        """Counters and configuration for monitoring"""
        host, port = self.config.target
        return {
            "role": "master",
            "local_address": list(self.endpoint.local_address),
            "target": f"{host}:{port}",
            "sync_period": self.config.sync_period,
            "started_at": self.started_at,
            "beacons_sent": self.beacons_sent,
            "delay_requests_answered": self.delay_requests_answered,
            "send_errors": self.send_errors,
            "recv_errors": self.recv_errors,
            "decode_errors": self.decode_errors,
        }

    def close(self) -> None:
        self.endpoint.close()
