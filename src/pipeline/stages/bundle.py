"""
Frame bundler stage.

Merges per-camera records into one bundle per synchronized frame.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional, Set, Union

from models.bundle import BundledAllCamsOneFrame
from models.detection import FrameDataAndPoints


class EndOfStream:
    """Marker telling the bundler no further records will arrive."""

    def __repr__(self) -> str:
        return "EOF"


EOF = EndOfStream()

StreamItem = Union[FrameDataAndPoints, EndOfStream]


class FrameBundler:
    """
    Groups records by synchronized frame number.

    One bundle is pending at a time. It is emitted when every connected
    camera has contributed to it, when a record for a newer frame arrives,
    or at end of stream. Records for a frame that was already emitted are
    dropped; the raw records are persisted before this stage, so nothing is
    lost on disk.
    """

    def __init__(self, camera_manager):
        self._camera_manager = camera_manager
        self._pending: Optional[BundledAllCamsOneFrame] = None
        self._pending_cams: Set[str] = set()
        self._last_emitted: Optional[int] = None
        self.num_dropped = 0

    def push(self, fdp: FrameDataAndPoints) -> Iterator[BundledAllCamsOneFrame]:
        """Add a record, yielding any bundles that became complete."""
        frame = fdp.frame_data.synced_frame
        if self._last_emitted is not None and frame <= self._last_emitted:
            self._drop(fdp, "frame already emitted")
            return

        if self._pending is not None and frame != self._pending.frame():
            if frame < self._pending.frame():
                self._drop(fdp, f"older than pending frame {self._pending.frame()}")
                return
            yield self._emit()

        cam_name = fdp.frame_data.cam_name
        if self._pending is None:
            self._pending = BundledAllCamsOneFrame.new(fdp)
            self._pending_cams = {cam_name}
        elif cam_name in self._pending_cams:
            self._drop(fdp, f"duplicate record from camera {cam_name}")
            return
        else:
            self._pending.push(fdp)
            self._pending_cams.add(cam_name)

        expected = set(self._camera_manager.cam_names())
        if expected and expected <= self._pending_cams:
            yield self._emit()

    def flush(self) -> Iterator[BundledAllCamsOneFrame]:
        """Emit the pending bundle, if any."""
        if self._pending is not None:
            yield self._emit()

    def _emit(self) -> BundledAllCamsOneFrame:
        bundle = self._pending
        self._pending = None
        self._pending_cams = set()
        self._last_emitted = bundle.frame()
        return bundle

    def _drop(self, fdp: FrameDataAndPoints, reason: str) -> None:
        self.num_dropped += 1
        # Log the first drop and then every 100th to keep the log readable.
        if self.num_dropped == 1 or self.num_dropped % 100 == 0:
            logging.warning(
                f"Dropping record from camera {fdp.frame_data.cam_name} for frame "
                f"{fdp.frame_data.synced_frame} ({reason}); {self.num_dropped} dropped so far"
            )


def bundle_frames(stream: Iterable[StreamItem], camera_manager) -> Iterator[BundledAllCamsOneFrame]:
    """
    Bundle a stream of per-camera records into per-frame bundles.

    Args:
        stream: Records in arrival order, optionally ending with EOF.
        camera_manager: Source of the currently connected camera names.

    Yields:
        Bundles in the order they complete.
    """
    bundler = FrameBundler(camera_manager)
    for item in stream:
        if isinstance(item, EndOfStream):
            yield from bundler.flush()
            return
        yield from bundler.push(item)
    yield from bundler.flush()
