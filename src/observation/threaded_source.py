"""
Live detection source polling camera devices on background threads.

Each camera is polled by its own thread. The device handle is guarded by a
lock that the polling thread re-acquires every cycle, so control calls
(exposure, gain, ...) can interleave with acquisition.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from models.detection import FrameDataAndPoints

from .base import DetectionSource, DetectionSourceConfig, FrameReadError

DEFAULT_QUEUE_SIZE = 100


@dataclass
class ThreadedCameraSourceConfig(DetectionSourceConfig):
    """
    Configuration for live camera sources.

    Attributes:
        queue_size: Records buffered between the polling threads and the reader.
        read_timeout: Seconds read() waits for a record before checking for shutdown.
    """
    queue_size: int = DEFAULT_QUEUE_SIZE
    read_timeout: float = 0.1


class _CameraWorker:
    def __init__(self, camera: Any, out: "ThreadedCameraSource"):
        self.camera = camera
        self.name = camera.name
        self.lock = threading.Lock()
        self._out = out
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"camera-{self.name}", daemon=True)
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._out._stop_event.is_set():
            try:
                with self.lock:
                    fdp = self.camera.next_frame()
            except FrameReadError as e:
                logging.warning(f"Camera {self.name}: frame read failed: {e}")
                continue
            except Exception as e:
                logging.error(f"Camera {self.name}: stopping acquisition: {e}")
                self.error = e
                break
            if fdp is None:
                continue
            self._out._enqueue(fdp)
        logging.info(f"Camera {self.name}: acquisition stopped")


class ThreadedCameraSource(DetectionSource):
    """
    Detection source merging several live cameras.

    A camera is any object with a `name` attribute and a blocking
    `next_frame()` returning a FrameDataAndPoints (or None on timeout).
    `next_frame()` raises FrameReadError for a recoverable single-frame
    failure; any other exception stops that camera's thread.

    Records go through a bounded queue. When the queue is full the newest
    record is dropped and logged.

    Example:
        source = ThreadedCameraSource(ThreadedCameraSourceConfig(source_id="rig"), cameras)
        with source:
            with source.device("cam1") as cam:
                cam.set_exposure(5000)
            for fdp in source:
                process(fdp)
    """

    def __init__(self, config: ThreadedCameraSourceConfig, cameras: Sequence[Any]):
        super().__init__(config)
        self._cam_config = config
        self._workers: Dict[str, _CameraWorker] = {}
        self._queue: queue.Queue = queue.Queue(maxsize=config.queue_size)
        self._stop_event = threading.Event()
        self.num_dropped = 0
        for camera in cameras:
            if camera.name in self._workers:
                raise ValueError(f"duplicate camera name: {camera.name}")
            self._workers[camera.name] = _CameraWorker(camera, self)

    def cam_names(self) -> List[str]:
        return sorted(self._workers)

    def open(self) -> None:
        """Start one polling thread per camera."""
        if self._is_open:
            return
        self._stop_event.clear()
        self._record_count = 0
        for worker in self._workers.values():
            worker.start()
        self._is_open = True
        logging.info(f"ThreadedCameraSource opened: source_id={self.source_id}, cameras={self.cam_names()}")

    def _enqueue(self, fdp: FrameDataAndPoints) -> None:
        try:
            self._queue.put_nowait(fdp)
        except queue.Full:
            self.num_dropped += 1
            logging.warning(
                f"Dropping record from camera {fdp.frame_data.cam_name} frame "
                f"{fdp.frame_data.synced_frame} due to backpressure ({self.num_dropped} dropped)"
            )

    @contextlib.contextmanager
    def device(self, cam_name: str) -> Iterator[Any]:
        """Exclusive access to a camera device for control calls."""
        worker = self._workers[cam_name]
        with worker.lock:
            yield worker.camera

    def read(self) -> Optional[FrameDataAndPoints]:
        """
        Wait for the next record.

        Returns None once the source is closed, or once every camera thread
        has stopped and the queue is empty.
        """
        while self._is_open:
            try:
                fdp = self._queue.get(timeout=self._cam_config.read_timeout)
            except queue.Empty:
                if not any(w.is_alive() for w in self._workers.values()):
                    return None
                continue
            self._record_count += 1
            return fdp
        return None

    def errors(self) -> Dict[str, BaseException]:
        """Errors that stopped camera threads, by camera name."""
        return {name: w.error for name, w in self._workers.items() if w.error is not None}

    def close(self) -> None:
        """Stop the polling threads and release the cameras."""
        self._stop_event.set()
        for worker in self._workers.values():
            worker.join(timeout=2.0)
            close = getattr(worker.camera, "close", None)
            if close is not None:
                with worker.lock:
                    close()
        if self._is_open:
            logging.info(
                f"ThreadedCameraSource closed: source_id={self.source_id}, "
                f"records={self._record_count}, dropped={self.num_dropped}"
            )
        self._is_open = False
