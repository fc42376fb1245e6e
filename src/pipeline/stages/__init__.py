"""
Pipeline stages for the multi-camera tracker.

Each stage is a generator over the record or bundle stream:
- bundle: Merge per-camera records into per-frame bundles
- contiguous: Insert empty bundles for skipped frames
"""

from .bundle import EOF, EndOfStream, FrameBundler, bundle_frames
from .contiguous import SENTINEL_FRAME, check_frame_representable, make_contiguous

__all__ = [
    "EOF",
    "EndOfStream",
    "FrameBundler",
    "bundle_frames",
    "SENTINEL_FRAME",
    "check_frame_representable",
    "make_contiguous",
]
