"""
Detection models for per-camera 2D point observations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class RawPoint:
    """
    A single 2D point detected by a camera's feature detector.

    Attributes:
        x0_abs: Horizontal pixel position (distorted image coordinates).
        y0_abs: Vertical pixel position (distorted image coordinates).
        area: Area of the detected blob in pixels.
        slope_eccentricity: Optional (slope, eccentricity) of the blob.
        cur_val: Intensity at the detection.
        mean_val: Mean background intensity.
        sumsqf_val: Sum of squares of the background intensity.
    """
    x0_abs: float
    y0_abs: float
    area: float = 0.0
    slope_eccentricity: Optional[Tuple[float, float]] = None
    cur_val: int = 0
    mean_val: float = 0.0
    sumsqf_val: float = 0.0


@dataclass(frozen=True)
class NumberedPoint:
    """A detected point together with its original index in the camera frame."""
    idx: int
    pt: RawPoint

    def __post_init__(self):
        if not 0 <= self.idx <= 255:
            raise ValueError(f"point index out of range: {self.idx}")


@dataclass(frozen=True)
class TimeDataPassthrough:
    """
    Synchronized frame number and trigger timestamp carried through the pipeline.

    Attributes:
        frame: Acquisition frame (synchronized, not raw from the camera).
        timestamp: Trigger timestamp in seconds, None if there is no clock model.
    """
    frame: int
    timestamp: Optional[float] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeDataPassthrough):
            return NotImplemented
        if self.frame != other.frame:
            return False
        if self.timestamp is None or other.timestamp is None:
            return self.timestamp is None and other.timestamp is None
        if abs(self.timestamp - other.timestamp) > 0.001:
            logging.error(
                f"for frame {self.frame}: multiple timestamps {self.timestamp} "
                f"and {other.timestamp} not within 1 ms"
            )
        return True

    def __hash__(self) -> int:
        return hash(self.frame)


@dataclass(frozen=True)
class FrameData:
    """
    Per-camera metadata for one synchronized frame.

    Attributes:
        cam_name: Camera name as kept by the calibration.
        cam_num: Camera identification number.
        synced_frame: Frame number after synchronization.
        trigger_timestamp: Time at which the hardware trigger fired.
        cam_received_timestamp: Time at which the host received the frame.
        device_timestamp: Timestamp from the camera, if any.
        block_id: Frame counter from the camera, if any.
    """
    cam_name: str
    cam_num: int
    synced_frame: int
    trigger_timestamp: Optional[float]
    cam_received_timestamp: float
    device_timestamp: Optional[int] = None
    block_id: Optional[int] = None

    @property
    def tdpt(self) -> TimeDataPassthrough:
        return TimeDataPassthrough(self.synced_frame, self.trigger_timestamp)


@dataclass(frozen=True)
class FrameDataAndPoints:
    """All detections from a single camera on a single synchronized frame."""
    frame_data: FrameData
    points: Tuple[NumberedPoint, ...] = field(default_factory=tuple)

    @classmethod
    def from_points(cls, frame_data: FrameData, points: List[RawPoint]) -> "FrameDataAndPoints":
        """Number points in detection order."""
        return cls(
            frame_data=frame_data,
            points=tuple(NumberedPoint(idx=i, pt=p) for i, p in enumerate(points)),
        )

    def with_points(self, points: Tuple[NumberedPoint, ...]) -> "FrameDataAndPoints":
        return replace(self, points=tuple(points))


@dataclass(frozen=True)
class UndistortedPoint:
    """A detection after removing lens distortion."""
    idx: int
    x: float
    y: float
    area: float = 0.0

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)
