"""
Track models for tracked 3D objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from .rows import DataAssocRow, KalmanEstimatesRow


class LifecycleTag(str, Enum):
    """Lifecycle state of a tracked object."""
    PROVISIONAL = "provisional"
    ALIVE = "alive"
    DEAD = "dead"


@dataclass
class LiveObject:
    """
    A tracked object in 3D.

    Attributes:
        obj_id: Unique, monotonically assigned identifier.
        state: State vector [x, y, z, xvel, yvel, zvel].
        covariance: 6x6 state covariance.
        tag: Lifecycle state.
        start_frame: Frame on which the object was born.
        frames_unassigned: Consecutive frames without any matched detection.
    """
    obj_id: int
    state: np.ndarray
    covariance: np.ndarray
    tag: LifecycleTag = LifecycleTag.PROVISIONAL
    start_frame: int = 0
    frames_unassigned: int = 0

    @property
    def position(self) -> np.ndarray:
        return self.state[:3]

    @property
    def velocity(self) -> np.ndarray:
        return self.state[3:]

    @property
    def is_live(self) -> bool:
        return self.tag != LifecycleTag.DEAD

    def to_row(self, frame: int, timestamp: Optional[float]) -> KalmanEstimatesRow:
        """Snapshot of the current estimate as a persisted row."""
        s = self.state
        P = self.covariance
        return KalmanEstimatesRow(
            obj_id=self.obj_id,
            frame=frame,
            timestamp=timestamp,
            x=float(s[0]),
            y=float(s[1]),
            z=float(s[2]),
            xvel=float(s[3]),
            yvel=float(s[4]),
            zvel=float(s[5]),
            P00=float(P[0, 0]),
            P01=float(P[0, 1]),
            P02=float(P[0, 2]),
            P11=float(P[1, 1]),
            P12=float(P[1, 2]),
            P22=float(P[2, 2]),
            P33=float(P[3, 3]),
            P44=float(P[4, 4]),
            P55=float(P[5, 5]),
        )


@dataclass(frozen=True)
class KalmanEstimateRecord:
    """
    Estimate of one object on one frame, with the detections that produced it.

    Attributes:
        record: The estimate row.
        data_assoc_rows: Detections assigned to the object on this frame.
        mean_reproj_dist_100x: Mean reprojection distance of the assigned
            detections in hundredths of a pixel, None if undefined.
    """
    record: KalmanEstimatesRow
    data_assoc_rows: List[DataAssocRow] = field(default_factory=list)
    mean_reproj_dist_100x: Optional[int] = None


def mean_reproj_dist_100x(distances: List[float]) -> Optional[int]:
    """Summarize reprojection distances in hundredths of a pixel."""
    finite = [d for d in distances if np.isfinite(d)]
    if not finite:
        return None
    return int(round(float(np.mean(finite)) * 100.0))
