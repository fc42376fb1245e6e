"""
Observation layer for pluggable 2D detection sources.

This layer abstracts where per-camera detections come from (live cameras,
saved recordings) from the tracking pipeline. Each source implements the
DetectionSource interface and returns FrameDataAndPoints records.
"""

from .base import DetectionSource, DetectionSourceConfig, FrameReadError
from .csv_source import CsvReplaySource, CsvReplaySourceConfig
from .threaded_source import ThreadedCameraSource, ThreadedCameraSourceConfig

__all__ = [
    "DetectionSource",
    "DetectionSourceConfig",
    "FrameReadError",
    "CsvReplaySource",
    "CsvReplaySourceConfig",
    "ThreadedCameraSource",
    "ThreadedCameraSourceConfig",
]
