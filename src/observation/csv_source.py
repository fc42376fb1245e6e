"""
Replay of saved 2D detections.

Reads a `data2d_distorted.csv` file (optionally with the `cam_info.csv`
beside it) and yields the per-camera records in file order, so a recording
can be tracked again with different parameters or calibration.
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, IO, Iterator, List, Optional

from models.detection import FrameData, FrameDataAndPoints, NumberedPoint, RawPoint

from .base import DetectionSource, DetectionSourceConfig

DATA2D_DISTORTED_CSV = "data2d_distorted.csv"
CAM_INFO_CSV = "cam_info.csv"


def _opt_float(value: str) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _opt_int(value: str) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(value))


def _float(value: str) -> float:
    parsed = _opt_float(value)
    return math.nan if parsed is None else parsed


def load_cam_info(path: Path) -> Dict[int, str]:
    """Read camera number to camera name assignments."""
    with open(path, newline="") as f:
        return {int(row["camn"]): row["cam_id"] for row in csv.DictReader(f)}


@dataclass
class CsvReplaySourceConfig(DetectionSourceConfig):
    """
    Configuration for replaying saved 2D data.

    Attributes:
        path: Recording directory or a data2d_distorted.csv file.
        cam_names: Camera number to name mapping. When empty, cam_info.csv
            next to the data file is used, falling back to "cam<N>".
    """
    path: str = "."
    cam_names: Optional[Dict[int, str]] = None


class CsvReplaySource(DetectionSource):
    """
    Detection source backed by a saved data2d_distorted.csv file.

    Consecutive rows with the same camera and frame form one record. A row
    with a NaN position marks a record without detections.

    Example:
        with CsvReplaySource(CsvReplaySourceConfig(path="recording.braid")) as source:
            for fdp in source:
                process(fdp)
    """

    def __init__(self, config: CsvReplaySourceConfig):
        super().__init__(config)
        self._replay_config = config
        self._file: Optional[IO] = None
        self._rows: Optional[Iterator[Dict[str, str]]] = None
        self._lookahead: Optional[Dict[str, str]] = None
        self._cam_names: Dict[int, str] = {}

    def _data_path(self) -> Path:
        path = Path(self._replay_config.path)
        if path.is_dir():
            return path / DATA2D_DISTORTED_CSV
        return path

    def open(self) -> None:
        """Open the data file and resolve camera names."""
        if self._is_open:
            return
        data_path = self._data_path()
        if not data_path.exists():
            raise RuntimeError(f"2D data file not found: {data_path}")

        if self._replay_config.cam_names:
            self._cam_names = dict(self._replay_config.cam_names)
        else:
            cam_info_path = data_path.parent / CAM_INFO_CSV
            if cam_info_path.exists():
                self._cam_names = load_cam_info(cam_info_path)

        self._file = open(data_path, newline="")
        self._rows = iter(csv.DictReader(self._file))
        self._lookahead = next(self._rows, None)
        self._is_open = True
        self._record_count = 0
        logging.info(
            f"CsvReplaySource opened: source_id={self.source_id}, path={data_path}, "
            f"cameras={self.cam_names()}"
        )

    def cam_names(self) -> List[str]:
        return [name for _, name in sorted(self._cam_names.items())]

    def _cam_name(self, camn: int) -> str:
        name = self._cam_names.get(camn)
        if name is None:
            name = f"cam{camn}"
            self._cam_names[camn] = name
        return name

    def read(self) -> Optional[FrameDataAndPoints]:
        """Read the rows of the next (camera, frame) record."""
        if not self._is_open or self._lookahead is None:
            return None

        first = self._lookahead
        key = (first["camn"], first["frame"])
        group: List[Dict[str, str]] = [first]
        self._lookahead = None
        for row in self._rows:
            if (row["camn"], row["frame"]) != key:
                self._lookahead = row
                break
            group.append(row)

        self._record_count += 1
        return self._to_record(group)

    def _to_record(self, group: List[Dict[str, str]]) -> FrameDataAndPoints:
        first = group[0]
        camn = int(first["camn"])
        frame_data = FrameData(
            cam_name=self._cam_name(camn),
            cam_num=camn,
            synced_frame=int(first["frame"]),
            trigger_timestamp=_opt_float(first["timestamp"]),
            cam_received_timestamp=_float(first["cam_received_timestamp"]),
            device_timestamp=_opt_int(first.get("device_timestamp")),
            block_id=_opt_int(first.get("block_id")),
        )

        points = []
        for row in group:
            x = _float(row["x"])
            if math.isnan(x):
                continue
            slope = _float(row.get("slope"))
            eccentricity = _float(row.get("eccentricity"))
            slope_eccentricity = None if math.isnan(slope) else (slope, eccentricity)
            pt = RawPoint(
                x0_abs=x,
                y0_abs=_float(row["y"]),
                area=_float(row.get("area")),
                slope_eccentricity=slope_eccentricity,
                cur_val=_opt_int(row.get("cur_val")) or 0,
                mean_val=_float(row.get("mean_val")),
                sumsqf_val=_float(row.get("sumsqf_val")),
            )
            idx = _opt_int(row.get("frame_pt_idx"))
            points.append(NumberedPoint(idx=len(points) if idx is None else idx, pt=pt))

        return FrameDataAndPoints(frame_data=frame_data, points=tuple(points))

    def close(self) -> None:
        """Close the data file."""
        if self._file is not None:
            self._file.close()
            self._file = None
        self._rows = None
        self._lookahead = None
        if self._is_open:
            logging.info(f"CsvReplaySource closed: source_id={self.source_id}, records={self._record_count}")
        self._is_open = False
