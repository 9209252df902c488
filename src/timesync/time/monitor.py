import time
import logging
from datetime import datetime
from typing import Dict, Optional

from timesync.core.notify import (
    ChangeOffset,
    InvalidMessageFormat,
    InvalidMessageSequence,
    Io,
    Notify,
    NotifyChannel,
)
from timesync.time.clock_skew import ClockSkewAnalyzer
from timesync.time.offset import TimeOffset, utc_now

logger = logging.getLogger(__name__)


class SyncMonitor:
    """
    Consumes a slave's notifications and keeps the view an application needs:
    the latest smoothed offset, the synchronized time, event counters and the
    drift analysis.
    """

    def __init__(
        self,
        analyzer: Optional[ClockSkewAnalyzer] = None,
        max_offset: float = 1.0,
        stale_after: float = 5.0,
    ):
        self.analyzer = analyzer or ClockSkewAnalyzer()
        self.max_offset = max_offset  # seconds
        self.stale_after = stale_after  # seconds without a ChangeOffset

        self.clock_offset: TimeOffset = TimeOffset.zero()
        self.last_sync_time = 0.0

        # Statistics
        self.offset_updates = 0
        self.sequence_violations = 0
        self.format_errors = 0
        self.io_errors = 0
        self.last_error: Optional[str] = None

    async def run(self, channel: NotifyChannel) -> None:
        """Drain the channel until it is closed"""
        async for notify in channel:
            self.record(notify)

    def record(self, notify: Notify) -> None:
        if isinstance(notify, ChangeOffset):
            self.clock_offset = notify.offset
            self.last_sync_time = time.time()
            self.offset_updates += 1
            self.analyzer.record_offset(notify.offset.total_seconds(), self.last_sync_time)
            logger.info(f"offset: {notify.offset}")
        elif isinstance(notify, InvalidMessageSequence):
            self.sequence_violations += 1
            logger.info("invalid message sequence")
        elif isinstance(notify, InvalidMessageFormat):
            self.format_errors += 1
            self.last_error = str(notify.error)
            logger.info(f"invalid message format: {notify.error}")
        elif isinstance(notify, Io):
            self.io_errors += 1
            self.last_error = str(notify.error)
            logger.info(f"io error: {notify.error}")
        else:
            raise TypeError(f"unknown notification: {notify!r}")

    def get_synchronized_time(self, local_time: Optional[datetime] = None) -> datetime:
        """Estimate of the master's clock at a local instant"""
        if local_time is None:
            local_time = utc_now()
        return self.clock_offset.correct(local_time)

    def is_synchronized(self) -> bool:
        if not self.offset_updates:
            return False
        fresh = time.time() - self.last_sync_time < self.stale_after
        return fresh and abs(self.clock_offset.total_seconds()) < self.max_offset

    def get_sync_status(self) -> Dict:
        return {
            "synchronized": self.is_synchronized(),
            "clock_offset": self.clock_offset.total_seconds(),
            "clock_offset_display": str(self.clock_offset),
            "predicted_offset": self.analyzer.predict_offset(),
            "drift_rate": self.analyzer.drift_rate,
            "last_sync_time": self.last_sync_time,
            "offset_updates": self.offset_updates,
            "sequence_violations": self.sequence_violations,
            "format_errors": self.format_errors,
            "io_errors": self.io_errors,
            "last_error": self.last_error,
        }

    def reset_statistics(self) -> None:
        self.offset_updates = 0
        self.sequence_violations = 0
        self.format_errors = 0
        self.io_errors = 0
        self.last_error = None
        self.analyzer.reset_analysis()
