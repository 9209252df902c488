from .wire import (
    DecodeError,
    Sync,
    FollowUp,
    DelayResp,
    DelayReq,
    encode,
    decode_master,
    decode_slave,
)

__all__ = [
    'DecodeError',
    'Sync',
    'FollowUp',
    'DelayResp',
    'DelayReq',
    'encode',
    'decode_master',
    'decode_slave',
]
