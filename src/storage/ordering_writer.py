"""
Frame-ordered row writer.

Estimates for different frames may be produced out of order (for example a
birth on frame f is saved after updates on frame f). Consumers of the saved
file assume rows are ordered by frame, so rows are buffered and written in
ascending frame order.
"""

from __future__ import annotations

import heapq
import logging
from typing import Any, Dict, IO, List, Optional

DEFAULT_BUFFER_FRAMES = 1000


class OrderingWriter:
    """
    Acts like a csv.DictWriter but buffers and orders rows by frame.

    Up to `buffer_size` distinct frames are held; when more arrive the
    oldest are written. `close()` writes everything still buffered, in
    order, then flushes and closes the underlying file. Use as a context
    manager so this happens on every exit path.

    Args:
        wtr: Object with `writerow(dict)` (e.g. csv.DictWriter).
        fd: File object behind `wtr`, flushed and closed by this writer.
        buffer_size: Number of distinct frames to hold before writing.
    """

    def __init__(self, wtr: Any, fd: Optional[IO] = None, buffer_size: int = DEFAULT_BUFFER_FRAMES):
        if buffer_size < 0:
            raise ValueError(f"buffer_size must be non-negative, got {buffer_size}")
        self._wtr = wtr
        self._fd = fd
        self.buffer_size = buffer_size
        self._buffer: Dict[int, List[Any]] = {}
        self._frames: List[int] = []
        self._closed = False

    def __enter__(self) -> "OrderingWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def buffered_frames(self) -> List[int]:
        """Frames currently held, in ascending order."""
        return sorted(self._buffer)

    def serialize(self, row: Any) -> None:
        """
        Buffer a row keyed by its `frame` attribute.

        Raises:
            OSError: If writing flushed rows to the underlying file fails.
        """
        if self._closed:
            raise ValueError("serialize() on closed OrderingWriter")
        frame = row.frame
        rows = self._buffer.get(frame)
        if rows is None:
            self._buffer[frame] = rows = []
            heapq.heappush(self._frames, frame)
        rows.append(row)

        n_to_save = len(self._buffer) - self.buffer_size
        for _ in range(max(0, n_to_save)):
            self._write_frame(heapq.heappop(self._frames))

    def flush(self) -> None:
        """Flush the underlying file. This does not drain the buffer."""
        if self._fd is not None:
            self._fd.flush()

    def close(self) -> None:
        """Write all buffered rows in frame order, then flush and close."""
        if self._closed:
            return
        self._closed = True
        try:
            while self._frames:
                self._write_frame(heapq.heappop(self._frames))
            self.flush()
        finally:
            if self._fd is not None:
                self._fd.close()
        logging.debug("OrderingWriter closed")

    def _write_frame(self, frame: int) -> None:
        for row in self._buffer.pop(frame):
            self._wtr.writerow(row.to_dict() if hasattr(row, "to_dict") else row)
