import time
import logging
import statistics
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ClockSkewAnalyzer:
    """
    Tracks the smoothed offsets reported by a slave and estimates how fast the
    local clock drifts away from the master.

    Offsets are signed seconds, positive when the local clock is ahead.
    """

    def __init__(self, window_size: int = 100, max_skew: float = 0.1, drift_warning: float = 1e-5):
        self.window_size = window_size
        self.max_skew = max_skew
        self.drift_warning = drift_warning  # seconds per second

        # (local timestamp, offset) pairs
        self.history: Deque[Tuple[float, float]] = deque(maxlen=window_size)

        self.current_skew = 0.0
        self.drift_rate = 0.0
        self.last_analysis_time = 0.0

    def record_offset(self, offset: float, timestamp: Optional[float] = None) -> None:
        """Record an offset measurement and refresh the drift estimate"""
        if timestamp is None:
            timestamp = time.time()
        self.history.append((timestamp, offset))
        self.current_skew = offset
        if len(self.history) >= 3:
            self._analyze_drift()

    def _analyze_drift(self) -> None:
        timestamps = [t for t, _ in self.history]
        offsets = [o for _, o in self.history]
        try:
            slope, _ = statistics.linear_regression(timestamps, offsets)
        except statistics.StatisticsError:
            # All samples share one timestamp.
            slope = 0.0
        self.drift_rate = slope
        self.last_analysis_time = time.time()

        if abs(self.drift_rate) > self.drift_warning:
            logger.warning(f"Clock drift detected: {self.drift_rate:.9f} s/s")

    def predict_offset(self, at: Optional[float] = None) -> float:
        """Extrapolate the offset to a local timestamp using the drift rate"""
        if not self.history:
            return 0.0
        if at is None:
            at = time.time()
        last_timestamp = self.history[-1][0]
        return self.current_skew + self.drift_rate * (at - last_timestamp)

    def is_skew_acceptable(self, skew: Optional[float] = None) -> bool:
        if skew is None:
            skew = self.current_skew
        return abs(skew) <= self.max_skew

    def detect_clock_jumps(self, threshold: float = 0.5) -> List[Tuple[float, float]]:
        """(timestamp, jump) pairs where consecutive offsets differ by more than threshold"""
        jumps = []
        samples = list(self.history)
        for (_, previous), (timestamp, offset) in zip(samples, samples[1:]):
            jump = abs(offset - previous)
            if jump > threshold:
                jumps.append((timestamp, jump))
        return jumps

    def get_skew_statistics(self) -> Dict:
        if not self.history:
            return {"error": "No data available"}

        offsets = [o for _, o in self.history]
        return {
            "current_skew": self.current_skew,
            "drift_rate": self.drift_rate,
            "measurements": len(offsets),
            "mean_offset": statistics.fmean(offsets),
            "median_offset": statistics.median(offsets),
            "std_deviation": statistics.stdev(offsets) if len(offsets) > 1 else 0.0,
            "min_offset": min(offsets),
            "max_offset": max(offsets),
            "acceptable": self.is_skew_acceptable(),
            "clock_jumps": len(self.detect_clock_jumps()),
            "last_analysis": self.last_analysis_time,
        }

    def reset_analysis(self) -> None:
        self.history.clear()
        self.current_skew = 0.0
        self.drift_rate = 0.0
        self.last_analysis_time = 0.0
