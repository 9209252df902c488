"""Events a slave reports to its hosting application, and the queue carrying them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

from timesync.protocol.wire import DecodeError
from timesync.time.offset import TimeOffset

DEFAULT_CHANNEL_SIZE = 1024


@dataclass(frozen=True)
class ChangeOffset:
    offset: TimeOffset


@dataclass(frozen=True)
class InvalidMessageSequence:
    pass


@dataclass(frozen=True)
class InvalidMessageFormat:
    error: DecodeError


@dataclass(frozen=True)
class Io:
    error: OSError


Notify = Union[ChangeOffset, InvalidMessageSequence, InvalidMessageFormat, Io]


class NotifyChannelClosed(Exception):
    """The consumer closed the channel; carries the undelivered notification."""

    def __init__(self, notify: Optional[Notify] = None):
        super().__init__("notification channel closed by consumer")
        self.notify = notify


class NotifyChannel:
    """Bounded, ordered, single-consumer queue of :data:`Notify` events.

    ``send`` waits for free space instead of dropping events. Once the
    consumer calls :meth:`close`, pending and future ``send`` calls raise
    :class:`NotifyChannelClosed`.
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("channel size must be at least 1")
        self.maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed.set()

    async def send(self, notify: Notify) -> None:
        if self.closed:
            raise NotifyChannelClosed(notify)
        if not self._queue.full():
            self._queue.put_nowait(notify)
            return

        put = asyncio.ensure_future(self._queue.put(notify))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            put.cancel()
            closed.cancel()
        if put not in done:
            raise NotifyChannelClosed(notify)

    async def recv(self) -> Notify:
        """Next notification in generation order."""
        return await self._queue.get()

    def recv_nowait(self) -> Notify:
        return self._queue.get_nowait()

    def __aiter__(self) -> "NotifyChannel":
        return self

    async def __anext__(self) -> Notify:
        """Next notification; iteration ends once the channel is closed and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            raise StopAsyncIteration

        get = asyncio.ensure_future(self._queue.get())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            get.cancel()
            closed.cancel()
        if get in done:
            return get.result()
        raise StopAsyncIteration
