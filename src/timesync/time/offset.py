"""Signed clock offsets built from non-negative durations.

``datetime.timedelta`` happily goes negative, which makes it easy to lose track
of which clock is ahead. ``TimeOffset`` keeps the sign as an explicit tag
(``Later`` / ``Earlier``) next to a magnitude that is never negative.

``Later(d)`` means the local clock reads ``d`` ahead of the reference it was
compared with, ``Earlier(d)`` means it reads ``d`` behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

ZERO = timedelta(0)

_UNITS = (
    ("d", timedelta(days=1)),
    ("h", timedelta(hours=1)),
    ("m", timedelta(minutes=1)),
    ("s", timedelta(seconds=1)),
    ("ms", timedelta(milliseconds=1)),
    ("us", timedelta(microseconds=1)),
)


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_duration(duration: timedelta) -> str:
    """Render a non-negative duration as e.g. ``1s 500ms 20us``."""
    if duration <= ZERO:
        return "0s"
    parts = []
    remaining = duration
    for suffix, unit in _UNITS:
        count, remaining = divmod(remaining, unit)
        if count:
            parts.append(f"{count}{suffix}")
    return " ".join(parts)


@dataclass(frozen=True, eq=False)
class TimeOffset:
    """Base of the two offset variants, never instantiated directly."""

    magnitude: timedelta = ZERO

    def __post_init__(self) -> None:
        if type(self) is TimeOffset:
            raise TypeError("TimeOffset is abstract, use Later or Earlier")
        if not isinstance(self.magnitude, timedelta):
            raise TypeError(f"magnitude must be a timedelta, got {type(self.magnitude).__name__}")
        if self.magnitude < ZERO:
            raise ValueError(f"offset magnitude must be non-negative, got {self.magnitude}")

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @staticmethod
    def zero() -> "TimeOffset":
        return Later(ZERO)

    @staticmethod
    def from_seconds(seconds: float) -> "TimeOffset":
        """Inverse of :meth:`total_seconds`: positive values are ``Later``."""
        if seconds >= 0:
            return Later(timedelta(seconds=seconds))
        return Earlier(timedelta(seconds=-seconds))

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def is_later(self) -> bool:
        return isinstance(self, Later)

    def total_seconds(self) -> float:
        """Signed seconds, positive when the local clock is ahead."""
        seconds = self.magnitude.total_seconds()
        return seconds if self.is_later else -seconds

    def _signed_microseconds(self) -> int:
        micros = self.magnitude // timedelta(microseconds=1)
        return micros if self.is_later else -micros

    def correct(self, instant: datetime) -> datetime:
        """Translate a local timestamp into the reference clock's time."""
        if self.is_later:
            return instant - self.magnitude
        return instant + self.magnitude

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def __add__(self, other: object) -> "TimeOffset":
        if not isinstance(other, TimeOffset):
            return NotImplemented
        if type(self) is type(other):
            return type(self)(self.magnitude + other.magnitude)
        if self.magnitude > other.magnitude:
            return type(self)(self.magnitude - other.magnitude)
        if other.magnitude > self.magnitude:
            return type(other)(other.magnitude - self.magnitude)
        return Later(ZERO)

    def __neg__(self) -> "TimeOffset":
        if self.is_later:
            return Earlier(self.magnitude)
        return Later(self.magnitude)

    def __sub__(self, other: object) -> "TimeOffset":
        if not isinstance(other, TimeOffset):
            return NotImplemented
        return self + (-other)

    def __truediv__(self, divisor: object) -> "TimeOffset":
        # Integer divisors only; magnitude is truncated to whole microseconds.
        if isinstance(divisor, bool) or not isinstance(divisor, int):
            return NotImplemented
        if divisor == 0:
            raise ZeroDivisionError("TimeOffset division by zero")
        scaled = type(self)(self.magnitude // abs(divisor))
        return -scaled if divisor < 0 else scaled

    # ------------------------------------------------------------------
    # Comparison and rendering
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeOffset):
            return NotImplemented
        return self._signed_microseconds() == other._signed_microseconds()

    def __hash__(self) -> int:
        return hash(self._signed_microseconds())

    def __repr__(self) -> str:
        label = "Later" if self.is_later else "Early"
        return f"{label}({format_duration(self.magnitude)})"

    __str__ = __repr__


@dataclass(frozen=True, eq=False, repr=False)
class Later(TimeOffset):
    """The sampled clock reads ahead of the base by ``magnitude``."""


@dataclass(frozen=True, eq=False, repr=False)
class Earlier(TimeOffset):
    """The sampled clock reads behind the base by ``magnitude``."""


def diff(base: datetime, sample: datetime) -> TimeOffset:
    """Offset of ``base`` relative to ``sample``.

    Returns ``Later(base - sample)`` when the sample precedes the base and
    ``Earlier(sample - base)`` otherwise (equal instants give ``Earlier(0)``,
    which compares equal to ``Later(0)``).
    """
    if sample < base:
        return Later(base - sample)
    return Earlier(sample - base)


def mean_offset(offsets: Iterable[TimeOffset]) -> TimeOffset:
    """Arithmetic mean of a non-empty collection of offsets."""
    offsets = list(offsets)
    if not offsets:
        raise ValueError("mean of an empty offset collection")
    return sum(offsets, TimeOffset.zero()) / len(offsets)
