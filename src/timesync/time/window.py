from collections import deque
from typing import Deque, Iterator, List

from .offset import TimeOffset, mean_offset


class OffsetWindow:
    """
    Bounded FIFO of offset samples used to smooth round-trip estimates.
    Pushing past capacity evicts the oldest sample.
    """

    def __init__(self, capacity: int = 64):
        if capacity < 1:
            raise ValueError(f"window capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._samples: Deque[TimeOffset] = deque(maxlen=capacity)

    def push(self, sample: TimeOffset) -> TimeOffset:
        """Add a sample and return the mean over the window."""
        self._samples.append(sample)
        return self.mean()

    def mean(self) -> TimeOffset:
        return mean_offset(self._samples)

    def total(self) -> TimeOffset:
        return sum(self._samples, TimeOffset.zero())

    def samples(self) -> List[TimeOffset]:
        return list(self._samples)

    def latest(self) -> TimeOffset:
        if not self._samples:
            raise ValueError("window is empty")
        return self._samples[-1]

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[TimeOffset]:
        return iter(self._samples)
