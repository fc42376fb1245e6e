"""
Typed models for the multi-camera tracker.

Detections and bundles flow in, tracked objects and rows flow out.
"""

from .detection import (
    RawPoint,
    NumberedPoint,
    FrameData,
    FrameDataAndPoints,
    TimeDataPassthrough,
    UndistortedPoint,
)
from .bundle import BundledAllCamsOneFrame, UndistortedBundle
from .rows import (
    Data2dDistortedRow,
    KalmanEstimatesRow,
    DataAssocRow,
    TextlogRow,
    TriggerClockInfoRow,
    CamInfoRow,
    ExperimentInfoRow,
    rows_to_save,
)
from .track import LifecycleTag, LiveObject, KalmanEstimateRecord
from .config import (
    Config,
    TrackingParams,
    HypothesisTestParams,
    StorageConfig,
    ServerConfig,
)

__all__ = [
    # Detection
    "RawPoint",
    "NumberedPoint",
    "FrameData",
    "FrameDataAndPoints",
    "TimeDataPassthrough",
    "UndistortedPoint",
    # Bundle
    "BundledAllCamsOneFrame",
    "UndistortedBundle",
    # Rows
    "Data2dDistortedRow",
    "KalmanEstimatesRow",
    "DataAssocRow",
    "TextlogRow",
    "TriggerClockInfoRow",
    "CamInfoRow",
    "ExperimentInfoRow",
    "rows_to_save",
    # Tracking
    "LifecycleTag",
    "LiveObject",
    "KalmanEstimateRecord",
    # Config
    "Config",
    "TrackingParams",
    "HypothesisTestParams",
    "StorageConfig",
    "ServerConfig",
]
