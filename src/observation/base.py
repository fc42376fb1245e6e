"""
DetectionSource interface for pluggable 2D detection sources.

This defines the contract that all detection sources must implement,
enabling the tracking pipeline to work with any input:
- Live cameras with on-board feature detection
- Replays of previously saved 2D data
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from models.detection import FrameDataAndPoints


class FrameReadError(RuntimeError):
    """A single frame could not be read. The source remains usable."""


@dataclass
class DetectionSourceConfig:
    """
    Base configuration for detection sources.

    Attributes:
        source_id: Unique identifier for this source (e.g., "replay", "rig-01").
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    metadata: Dict[str, Any] = field(default_factory=dict)


class DetectionSource(ABC):
    """
    Abstract base class for detection sources.

    A detection source yields one FrameDataAndPoints per camera per frame,
    in arrival order.

    Lifecycle:
        1. Create instance with config
        2. Call open() to initialize the source
        3. Call read() repeatedly to get records
        4. Call close() to release resources

    Can also be used as a context manager:
        with CsvReplaySource(config, path) as source:
            for fdp in source:
                process(fdp)
    """

    def __init__(self, config: DetectionSourceConfig):
        self._config = config
        self._is_open = False
        self._record_count = 0

    @property
    def source_id(self) -> str:
        """Unique identifier for this source."""
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        """Whether the source is currently open and ready to read."""
        return self._is_open

    @property
    def record_count(self) -> int:
        """Number of records read since open."""
        return self._record_count

    @abstractmethod
    def open(self) -> None:
        """
        Open/initialize the detection source.

        Raises:
            RuntimeError: If the source cannot be opened.
        """

    @abstractmethod
    def read(self) -> Optional[FrameDataAndPoints]:
        """
        Read the next record from the source.

        Returns:
            The next record, or None when the source is exhausted or closed.
        """

    @abstractmethod
    def close(self) -> None:
        """
        Close/release the detection source.

        Safe to call multiple times.
        """

    def cam_names(self) -> List[str]:
        """Names of the cameras this source reports, if known in advance."""
        return []

    def __enter__(self) -> "DetectionSource":
        """Context manager entry - opens the source."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes the source."""
        self.close()

    def __iter__(self) -> Iterator[FrameDataAndPoints]:
        """
        Iterate over records from the source.

        The source must be open before iterating.
        """
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")

        while True:
            fdp = self.read()
            if fdp is None:
                break
            yield fdp
