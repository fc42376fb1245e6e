"""
Contiguity stage.

Guarantees the bundle stream has no missing frame numbers.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from models.bundle import BundledAllCamsOneFrame
from models.errors import FatalPipelineError

# Reserved frame number that can never be produced by a healthy stream.
SENTINEL_FRAME = 2 ** 64 - 1


def check_frame_representable(frame: int) -> None:
    """
    Raises:
        FatalPipelineError: If the frame number is the sentinel or negative.
    """
    if frame == SENTINEL_FRAME or frame < 0:
        raise FatalPipelineError(
            "representable-frame",
            "impossible frame number in upstream stream",
            frame=frame,
        )


def make_contiguous(bundles: Iterable[BundledAllCamsOneFrame]) -> Iterator[BundledAllCamsOneFrame]:
    """
    Yield bundles, inserting an empty bundle for every skipped frame.

    Only the last seen frame number is kept. Bundles that do not advance the
    frame number are passed through unchanged; ordering is checked
    downstream.
    """
    previous: Optional[int] = None
    for bundle in bundles:
        frame = bundle.frame()
        check_frame_representable(frame)
        if previous is not None and frame > previous + 1:
            for missing in range(previous + 1, frame):
                yield BundledAllCamsOneFrame.empty(missing)
        yield bundle
        previous = frame
