from .offset import TimeOffset, Later, Earlier, diff, mean_offset, utc_now, format_duration
from .window import OffsetWindow

__all__ = [
    # Offset arithmetic
    'TimeOffset',
    'Later',
    'Earlier',
    'diff',
    'mean_offset',
    'utc_now',
    'format_duration',

    # Smoothing
    'OffsetWindow',
]
