"""
Events broadcast to live listeners.

Each event is sent as a tuple `(event, TimeDataPassthrough)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

from .rows import KalmanEstimatesRow


@dataclass(frozen=True)
class Calibration:
    """Calibration in effect, sent once before frames are processed."""
    calibration: Dict[str, Any]


@dataclass(frozen=True)
class Birth:
    row: KalmanEstimatesRow


@dataclass(frozen=True)
class Update:
    row: KalmanEstimatesRow


@dataclass(frozen=True)
class Death:
    obj_id: int


@dataclass(frozen=True)
class EndOfFrame:
    frame: int


SendType = Union[Calibration, Birth, Update, Death, EndOfFrame]


def event_to_dict(event: SendType) -> Dict[str, Any]:
    """JSON-ready representation of an event."""
    if isinstance(event, Calibration):
        return {"type": "calibration", "calibration": event.calibration}
    if isinstance(event, Birth):
        return {"type": "birth", **event.row.to_dict()}
    if isinstance(event, Update):
        return {"type": "update", **event.row.to_dict()}
    if isinstance(event, Death):
        return {"type": "death", "obj_id": event.obj_id}
    if isinstance(event, EndOfFrame):
        return {"type": "end_of_frame", "frame": event.frame}
    raise TypeError(f"unknown event type: {type(event).__name__}")
