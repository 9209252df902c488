"""Datagram formats exchanged between master and slaves.

Every datagram starts with a 4-byte header ``b"TS" | version | tag`` followed
by the fields of the tagged message. Timestamps are big-endian signed 64-bit
microseconds since the Unix epoch (UTC).

Master -> slave tags: Sync 0x01, FollowUp 0x02, DelayResp 0x03
Slave -> master tags: DelayReq 0x81
"""

import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import ClassVar, Dict, Type, Union

MAGIC = b"TS"
VERSION = 1

HEADER = struct.Struct("!2sBB")
TIMESTAMP = struct.Struct("!q")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MICROSECOND = timedelta(microseconds=1)


class DecodeError(ValueError):
    """Raised when a datagram is not exactly one known message."""


@dataclass(frozen=True)
class Sync:
    TAG: ClassVar[int] = 0x01


@dataclass(frozen=True)
class FollowUp:
    t1: datetime  # master clock right after the Sync left
    TAG: ClassVar[int] = 0x02


@dataclass(frozen=True)
class DelayResp:
    t2: datetime  # master clock when the DelayReq arrived
    TAG: ClassVar[int] = 0x03


@dataclass(frozen=True)
class DelayReq:
    TAG: ClassVar[int] = 0x81


MasterMessage = Union[Sync, FollowUp, DelayResp]
SlaveMessage = DelayReq
Message = Union[Sync, FollowUp, DelayResp, DelayReq]

MASTER_MESSAGES: Dict[int, Type] = {cls.TAG: cls for cls in (Sync, FollowUp, DelayResp)}
SLAVE_MESSAGES: Dict[int, Type] = {DelayReq.TAG: DelayReq}


def _pack_timestamp(ts: datetime) -> bytes:
    if ts.tzinfo is None:
        raise ValueError("timestamps must be timezone-aware")
    return TIMESTAMP.pack((ts - EPOCH) // MICROSECOND)


def _unpack_timestamp(data: bytes) -> datetime:
    (micros,) = TIMESTAMP.unpack(data)
    try:
        return EPOCH + micros * MICROSECOND
    except OverflowError as e:
        raise DecodeError(f"timestamp out of range: {micros}us") from e


def encode(message: Message) -> bytes:
    """Serialize one message into a datagram payload."""
    header = HEADER.pack(MAGIC, VERSION, message.TAG)
    if isinstance(message, FollowUp):
        return header + _pack_timestamp(message.t1)
    if isinstance(message, DelayResp):
        return header + _pack_timestamp(message.t2)
    if isinstance(message, (Sync, DelayReq)):
        return header
    raise TypeError(f"not a protocol message: {message!r}")


def _decode(data: bytes, family: Dict[int, Type]):
    if len(data) < HEADER.size:
        raise DecodeError(f"datagram too short: {len(data)} bytes")
    magic, version, tag = HEADER.unpack_from(data)
    if magic != MAGIC:
        raise DecodeError(f"bad magic {magic!r}")
    if version != VERSION:
        raise DecodeError(f"unsupported version {version}")
    cls = family.get(tag)
    if cls is None:
        raise DecodeError(f"unexpected message tag 0x{tag:02x}")

    body = data[HEADER.size:]
    if cls in (FollowUp, DelayResp):
        if len(body) != TIMESTAMP.size:
            raise DecodeError(f"{cls.__name__} expects {TIMESTAMP.size} payload bytes, got {len(body)}")
        return cls(_unpack_timestamp(body))
    if body:
        raise DecodeError(f"{cls.__name__} carries no payload, got {len(body)} bytes")
    return cls()


def decode_master(data: bytes) -> MasterMessage:
    """Decode a datagram sent by the master (Sync, FollowUp or DelayResp)."""
    return _decode(data, MASTER_MESSAGES)


def decode_slave(data: bytes) -> SlaveMessage:
    """Decode a datagram sent by a slave (DelayReq)."""
    return _decode(data, SLAVE_MESSAGES)
