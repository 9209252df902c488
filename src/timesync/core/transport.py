import asyncio
import logging
import socket
from typing import Tuple

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

DEFAULT_RECV_BUFFER_SIZE = 1024


def parse_address(value: str) -> Address:
    """Parse ``host:port`` (or ``[v6-host]:port``) into an address tuple."""
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got {value!r}")
    host = host.strip("[]")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in {value!r}") from None


class UdpEndpoint:
    """
    Non-blocking UDP socket driven by the running asyncio loop.

    Sends and receives may be awaited concurrently from different tasks;
    the loop registers the two directions independently.
    """

    def __init__(self, sock: socket.socket, recv_buffer_size: int = DEFAULT_RECV_BUFFER_SIZE):
        sock.setblocking(False)
        self._sock = sock
        self.recv_buffer_size = recv_buffer_size

    @classmethod
    def bind(
        cls,
        addr: Address,
        *,
        broadcast: bool = True,
        recv_buffer_size: int = DEFAULT_RECV_BUFFER_SIZE,
    ) -> "UdpEndpoint":
        family = socket.AF_INET6 if ":" in addr[0] else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            if broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(addr)
        except OSError:
            sock.close()
            raise
        endpoint = cls(sock, recv_buffer_size)
        logger.info(f"UDP endpoint bound on {endpoint.local_address}")
        return endpoint

    @property
    def local_address(self) -> Address:
        return self._sock.getsockname()[:2]

    async def recv_from(self) -> Tuple[bytes, Address]:
        # Datagrams longer than recv_buffer_size are truncated by the OS.
        loop = asyncio.get_running_loop()
        data, addr = await loop.sock_recvfrom(self._sock, self.recv_buffer_size)
        return data, addr[:2]

    async def send_to(self, data: bytes, addr: Address) -> int:
        loop = asyncio.get_running_loop()
        return await loop.sock_sendto(self._sock, data, addr)

    def close(self) -> None:
        self._sock.close()
