"""
Messages sent to the storage writer.

The storage writer is the only owner of output file handles; every other
component talks to it through these messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from .detection import FrameDataAndPoints
from .rows import TextlogRow, TriggerClockInfoRow
from .track import KalmanEstimateRecord


@dataclass(frozen=True)
class PerCamSaveData:
    """Per-camera metadata saved alongside the tracking data."""
    cam_num: int
    current_image_png: Optional[bytes] = None
    cam_settings_data: Optional[Dict[str, Any]] = None


@dataclass
class StartSavingCsvConfig:
    """
    Configuration for a new recording session.

    Attributes:
        out_dir: Output directory. A name ending in ".braidz" is zipped on stop.
        local: Local start time of the recording.
        git_rev: Revision string of the running program.
        fps: Expected frame rate.
        per_cam_data: Per-camera save parameters keyed by camera name.
        print_stats: Log summary statistics when the session stops.
        save_performance_histograms: Write latency and reprojection histograms.
    """
    out_dir: str
    local: Optional[datetime] = None
    git_rev: str = "unknown"
    fps: Optional[float] = None
    per_cam_data: Dict[str, PerCamSaveData] = field(default_factory=dict)
    print_stats: bool = False
    save_performance_histograms: bool = True


@dataclass(frozen=True)
class KalmanEstimate:
    record: KalmanEstimateRecord


@dataclass(frozen=True)
class Data2dDistorted:
    fdp: FrameDataAndPoints


@dataclass(frozen=True)
class StartSavingCsv:
    config: StartSavingCsvConfig


@dataclass(frozen=True)
class StopSavingCsv:
    pass


@dataclass(frozen=True)
class Textlog:
    row: TextlogRow


@dataclass(frozen=True)
class TriggerClockInfo:
    row: TriggerClockInfoRow


@dataclass(frozen=True)
class SetExperimentUuid:
    uuid: str


@dataclass(frozen=True)
class Shutdown:
    """Closes the writer channel. Not part of the recording protocol."""


SaveToDiskMsg = Union[
    KalmanEstimate,
    Data2dDistorted,
    StartSavingCsv,
    StopSavingCsv,
    Textlog,
    TriggerClockInfo,
    SetExperimentUuid,
]
