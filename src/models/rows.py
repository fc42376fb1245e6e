"""
Row schemas for the persisted tables.

Each table is written as one CSV file. Field order of the dataclass is the
column order of the file.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional

from .detection import FrameData, FrameDataAndPoints, NumberedPoint


class Row:
    """Mixin providing column names and dict conversion for row dataclasses."""

    @classmethod
    def fieldnames(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Data2dDistortedRow(Row):
    """One raw detection (or an empty frame marker) from one camera."""
    camn: int
    frame: int
    timestamp: Optional[float]
    cam_received_timestamp: float
    device_timestamp: Optional[int]
    block_id: Optional[int]
    x: float
    y: float
    area: float
    slope: float
    eccentricity: float
    frame_pt_idx: int
    cur_val: int
    mean_val: float
    sumsqf_val: float

    @classmethod
    def from_point(cls, frame_data: FrameData, numbered: NumberedPoint) -> "Data2dDistortedRow":
        pt = numbered.pt
        if pt.slope_eccentricity is None:
            slope, eccentricity = math.nan, math.nan
        else:
            slope, eccentricity = pt.slope_eccentricity
        return cls(
            camn=frame_data.cam_num,
            frame=frame_data.synced_frame,
            timestamp=frame_data.trigger_timestamp,
            cam_received_timestamp=frame_data.cam_received_timestamp,
            device_timestamp=frame_data.device_timestamp,
            block_id=frame_data.block_id,
            x=pt.x0_abs,
            y=pt.y0_abs,
            area=pt.area,
            slope=slope,
            eccentricity=eccentricity,
            frame_pt_idx=numbered.idx,
            cur_val=pt.cur_val,
            mean_val=pt.mean_val,
            sumsqf_val=pt.sumsqf_val,
        )

    @classmethod
    def empty(cls, frame_data: FrameData) -> "Data2dDistortedRow":
        """Marker row recording that a camera reported a frame with no points."""
        return cls(
            camn=frame_data.cam_num,
            frame=frame_data.synced_frame,
            timestamp=frame_data.trigger_timestamp,
            cam_received_timestamp=frame_data.cam_received_timestamp,
            device_timestamp=frame_data.device_timestamp,
            block_id=frame_data.block_id,
            x=math.nan,
            y=math.nan,
            area=math.nan,
            slope=math.nan,
            eccentricity=math.nan,
            frame_pt_idx=0,
            cur_val=0,
            mean_val=math.nan,
            sumsqf_val=math.nan,
        )


def rows_to_save(fdp: FrameDataAndPoints, save_empty_data2d: bool) -> List[Data2dDistortedRow]:
    """Convert a camera record into the rows persisted for it."""
    rows = [Data2dDistortedRow.from_point(fdp.frame_data, p) for p in fdp.points]
    if not rows and save_empty_data2d:
        rows = [Data2dDistortedRow.empty(fdp.frame_data)]
    return rows


@dataclass(frozen=True)
class KalmanEstimatesRow(Row):
    """Post-update state of one object on one frame."""
    obj_id: int
    frame: int
    timestamp: Optional[float]
    x: float
    y: float
    z: float
    xvel: float
    yvel: float
    zvel: float
    P00: float
    P01: float
    P02: float
    P11: float
    P12: float
    P22: float
    P33: float
    P44: float
    P55: float


@dataclass(frozen=True)
class DataAssocRow(Row):
    """One detection assigned to one object."""
    obj_id: int
    frame: int
    cam_num: int
    pt_idx: int


@dataclass(frozen=True)
class TextlogRow(Row):
    mainloop_timestamp: float
    cam_id: str
    host_timestamp: float
    message: str


@dataclass(frozen=True)
class TriggerClockInfoRow(Row):
    start_timestamp: float
    framecount: int
    tcnt: int
    stop_timestamp: float


@dataclass(frozen=True)
class CamInfoRow(Row):
    camn: int
    cam_id: str


@dataclass(frozen=True)
class ExperimentInfoRow(Row):
    uuid: str
