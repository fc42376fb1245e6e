"""
Registry of connected cameras.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from models.rows import CamInfoRow


class ConnectedCamerasManager:
    """
    Assigns camera numbers and tracks which cameras are connected.

    Shared between the ingest thread and control calls, so every access
    holds an internal lock.
    """

    def __init__(self, cam_names: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._cam_nums: Dict[str, int] = {}
        self._next_cam_num = 0
        for name in cam_names:
            self.register(name)

    def register(self, cam_name: str) -> int:
        """Register a camera (idempotent) and return its camera number."""
        with self._lock:
            cam_num = self._cam_nums.get(cam_name)
            if cam_num is None:
                cam_num = self._next_cam_num
                self._next_cam_num += 1
                self._cam_nums[cam_name] = cam_num
                logging.info(f"Camera {cam_name} connected as camn {cam_num}")
            return cam_num

    def remove(self, cam_name: str) -> None:
        with self._lock:
            if self._cam_nums.pop(cam_name, None) is not None:
                logging.info(f"Camera {cam_name} disconnected")

    def cam_num(self, cam_name: str) -> Optional[int]:
        with self._lock:
            return self._cam_nums.get(cam_name)

    def cam_names(self) -> List[str]:
        with self._lock:
            return sorted(self._cam_nums)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cam_nums)

    def cam_info_rows(self) -> List[CamInfoRow]:
        with self._lock:
            return [CamInfoRow(camn=num, cam_id=name) for name, num in sorted(self._cam_nums.items())]
