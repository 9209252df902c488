from .transport import UdpEndpoint, parse_address
from .notify import (
    ChangeOffset,
    InvalidMessageSequence,
    InvalidMessageFormat,
    Io,
    NotifyChannel,
    NotifyChannelClosed,
)
from .master import Master, MasterConfig
from .slave import Slave, SlaveConfig, Cleared, SyncReceived, FollowUpReceived, estimate_offset

__all__ = [
    'UdpEndpoint',
    'parse_address',
    'ChangeOffset',
    'InvalidMessageSequence',
    'InvalidMessageFormat',
    'Io',
    'NotifyChannel',
    'NotifyChannelClosed',
    'Master',
    'MasterConfig',
    'Slave',
    'SlaveConfig',
    'Cleared',
    'SyncReceived',
    'FollowUpReceived',
    'estimate_offset',
]
