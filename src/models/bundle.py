"""
Bundle of all cameras' detections for one synchronized frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .detection import FrameDataAndPoints, TimeDataPassthrough, UndistortedPoint


@dataclass
class BundledAllCamsOneFrame:
    """
    Union of frame records across all cameras for exactly one frame.

    Attributes:
        tdpt: Frame number and trigger timestamp shared by all records.
        inner: Per-camera records in arrival order.
    """
    tdpt: TimeDataPassthrough
    inner: List[FrameDataAndPoints] = field(default_factory=list)

    @classmethod
    def empty(cls, frame: int) -> "BundledAllCamsOneFrame":
        """Bundle with no detections, used to fill gaps in the frame sequence."""
        return cls(tdpt=TimeDataPassthrough(frame, None))

    @classmethod
    def new(cls, fdp: FrameDataAndPoints) -> "BundledAllCamsOneFrame":
        return cls(tdpt=fdp.frame_data.tdpt, inner=[fdp])

    def frame(self) -> int:
        return self.tdpt.frame

    def push(self, fdp: FrameDataAndPoints) -> None:
        if fdp.frame_data.synced_frame != self.tdpt.frame:
            raise ValueError(
                f"record for frame {fdp.frame_data.synced_frame} pushed into bundle "
                f"for frame {self.tdpt.frame}"
            )
        self.inner.append(fdp)

    def cam_names(self) -> List[str]:
        return [fdp.frame_data.cam_name for fdp in self.inner]

    def num_points(self) -> int:
        return sum(len(fdp.points) for fdp in self.inner)

    def undistort(self, recon) -> "UndistortedBundle":
        """
        Remove lens distortion from every detection using the calibration.

        Cameras unknown to the calibration are skipped.
        """
        per_cam: Dict[str, List[UndistortedPoint]] = {}
        cam_nums: Dict[str, int] = {}
        for fdp in self.inner:
            cam_name = fdp.frame_data.cam_name
            cam = recon.cam_by_name(cam_name)
            if cam is None:
                continue
            pts = per_cam.setdefault(cam_name, [])
            cam_nums[cam_name] = fdp.frame_data.cam_num
            for numbered in fdp.points:
                x, y = cam.undistort_pixel(numbered.pt.x0_abs, numbered.pt.y0_abs)
                pts.append(UndistortedPoint(idx=numbered.idx, x=x, y=y, area=numbered.pt.area))
        return UndistortedBundle(tdpt=self.tdpt, points=per_cam, cam_nums=cam_nums)


@dataclass
class UndistortedBundle:
    """Undistorted detections of one bundle, keyed by camera name."""
    tdpt: TimeDataPassthrough
    points: Dict[str, List[UndistortedPoint]] = field(default_factory=dict)
    cam_nums: Dict[str, int] = field(default_factory=dict)

    def frame(self) -> int:
        return self.tdpt.frame

    def items(self) -> List[Tuple[str, List[UndistortedPoint]]]:
        return sorted(self.points.items())

    def cam_num(self, cam_name: str) -> Optional[int]:
        return self.cam_nums.get(cam_name)
