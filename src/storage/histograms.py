"""
Performance histograms.

Latency and reprojection-distance samples are accumulated into HdrHistogram
instances. A new interval is started every 60 seconds so that a session
produces a time series of histograms, saved as an HdrHistogram interval log
next to the other session files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from hdrh.histogram import HdrHistogram
from hdrh.log import HistogramLogWriter

# Histograms are closed once they span this many seconds.
INTERVAL_SECONDS = 60.0

LOWEST_TRACKABLE = 1
HIGHEST_TRACKABLE = 60_000_000  # 60 seconds in microseconds
SIGNIFICANT_FIGURES = 2


def new_histogram() -> HdrHistogram:
    return HdrHistogram(LOWEST_TRACKABLE, HIGHEST_TRACKABLE, SIGNIFICANT_FIGURES)


@dataclass
class StartedHistogram:
    start_time: float
    histogram: HdrHistogram

    def end(self, file_start_time: float, end_time: float) -> Optional["IntervalHistogram"]:
        """
        Close into an interval relative to the file start.

        Returns None when the histogram starts before the file does.
        """
        start_offset = self.start_time - file_start_time
        if start_offset < 0:
            return None
        self.histogram.set_start_time_stamp(int(round(start_offset * 1000.0)))
        self.histogram.set_end_time_stamp(int(round((end_time - file_start_time) * 1000.0)))
        return IntervalHistogram(
            start_offset=start_offset,
            duration=end_time - self.start_time,
            histogram=self.histogram,
        )


@dataclass
class IntervalHistogram:
    start_offset: float
    duration: float
    histogram: HdrHistogram


class HistogramRecorder:
    """
    Accumulates samples into successive fixed-duration histograms.

    Args:
        file_start_time: Session start, seconds since the epoch.
    """

    def __init__(self, file_start_time: float):
        self.file_start_time = file_start_time
        self.current: Optional[StartedHistogram] = None
        self.intervals: List[IntervalHistogram] = []

    def record(self, value: int, now: float) -> None:
        """Record a sample observed at time `now`. Unrecordable samples are dropped."""
        if self.current is None:
            self.current = StartedHistogram(start_time=now, histogram=new_histogram())

        if self.current.start_time > now:
            # Clock went backwards or malformed input.
            return

        if not self.current.histogram.record_value(int(value)):
            logging.debug(f"Dropping histogram sample {value}: outside trackable range")

        if now - self.current.start_time >= INTERVAL_SECONDS:
            self._close(now)

    def finish(self, now: float) -> None:
        """Close the open histogram, if any."""
        if self.current is not None:
            self._close(now)

    def _close(self, now: float) -> None:
        interval = self.current.end(self.file_start_time, now)
        self.current = None
        if interval is not None:
            self.intervals.append(interval)

    def save_hlog(self, directory, name: str) -> Optional[Path]:
        """
        Write closed intervals to `<directory>/<name>.hlog`.

        Returns:
            Path written, or None when nothing was recorded.
        """
        if not self.intervals:
            return None
        path = Path(directory) / f"{name}.hlog"
        start = datetime.fromtimestamp(self.file_start_time, tz=timezone.utc)
        with open(path, "w") as f:
            log = HistogramLogWriter(f)
            log.output_log_format_version()
            log.output_comment(f"[StartTime: {self.file_start_time:.3f} (seconds since epoch), {start.isoformat()}]")
            log.output_legend()
            for interval in self.intervals:
                log.output_interval_histogram(
                    interval.histogram,
                    start_time_stamp_sec=interval.start_offset,
                    end_time_stamp_sec=interval.start_offset + interval.duration,
                    max_value_unit_ratio=1.0,
                )
        logging.info(f"Saved {len(self.intervals)} histogram intervals to {path}")
        return path
