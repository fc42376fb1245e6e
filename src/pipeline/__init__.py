"""
Pipeline module for the multi-camera tracker.

The pipeline orchestrates the full processing flow:
- Bundling per-camera records into synchronized frames
- Filling gaps in the frame sequence
- Advancing the tracked object lifecycle
- Forwarding raw records and estimates to the archive writer
"""

from .cameras import ConnectedCamerasManager
from .engine import CoordProcessor, CoordProcessorControl, CoordStats

__all__ = [
    "ConnectedCamerasManager",
    "CoordProcessor",
    "CoordProcessorControl",
    "CoordStats",
]
