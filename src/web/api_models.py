from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    """Summary of the live model, polled by dashboards."""
    running: bool = Field(..., description="True if the model server is consuming events")
    has_calibration: bool = Field(..., description="True once the calibration has been received")
    last_frame: Optional[int] = Field(None, description="Last completely processed frame")
    live_obj_ids: List[int] = Field(default_factory=list, description="Ids of currently tracked objects")
    num_live_objects: int = Field(0, description="Number of currently tracked objects")
    num_subscribers: int = Field(0, description="Connected event stream clients")
    events_received: int = 0
    events_dropped: int = Field(0, description="Events not delivered to slow subscribers")
    uptime_seconds: int = 0
