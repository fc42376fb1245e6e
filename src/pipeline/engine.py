"""
Coordinator for the tracking pipeline.

The coordinator drives the per-camera record stream through bundling, gap
filling, undistortion and the lifecycle transitions on the caller's thread,
and forwards everything to be persisted to the archive writer thread over a
bounded queue.
"""

from __future__ import annotations

import logging
import queue
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Optional

from geometry.camera import MultiCameraSystem
from models.bundle import UndistortedBundle
from models.config import StorageConfig, TrackingParams
from models.detection import TimeDataPassthrough
from models.errors import ConfigurationError, FatalPipelineError
from models.events import Calibration
from models.messages import (
    Data2dDistorted,
    SetExperimentUuid,
    Shutdown,
    StartSavingCsv,
    StartSavingCsvConfig,
    StopSavingCsv,
    Textlog,
    TriggerClockInfo,
)
from models.rows import TextlogRow, TriggerClockInfoRow
from storage.writer import ArchiveWriter, prepare_output_dir
from tracking.lifecycle import CollectionFrameDone, broadcast, initialize_model_collection

from .cameras import ConnectedCamerasManager
from .stages.bundle import EndOfStream, StreamItem, bundle_frames
from .stages.contiguous import check_frame_representable, make_contiguous

WRITER_QUEUE_SIZE = 10

# How long a blocked send waits before checking the writer is still running.
SEND_POLL_SECONDS = 0.5


@dataclass
class CoordStats:
    """Counters for one run of the coordinator."""
    records: int = 0
    bundles: int = 0
    gap_frames: int = 0
    start_time: float = field(default_factory=time.time)


class CoordProcessorControl:
    """
    Handle for controlling recording from other threads.

    Every call enqueues a message for the archive writer and may block
    while the writer queue is full.
    """

    def __init__(self, coord: "CoordProcessor"):
        self._coord = coord

    def start_saving_data(self, cfg: StartSavingCsvConfig) -> None:
        """
        Start a recording session.

        The output directory is created before the request is queued, so a
        bad configuration is reported here and tracking continues.

        Raises:
            ConfigurationError: If the output directory cannot be used.
        """
        prepare_output_dir(cfg)
        self._coord.send(StartSavingCsv(cfg))

    def stop_saving_data(self) -> None:
        self._coord.send(StopSavingCsv())

    def append_textlog_message(self, row: TextlogRow) -> None:
        self._coord.send(Textlog(row))

    def append_trigger_clock_info_message(self, row: TriggerClockInfoRow) -> None:
        self._coord.send(TriggerClockInfo(row))

    def set_experiment_uuid(self, uuid: str) -> None:
        self._coord.send(SetExperimentUuid(uuid))


class CoordProcessor:
    """
    Runs the tracking pipeline and owns the archive writer.

    Example:
        with CoordProcessor(cam_manager, recon, tracking_params, storage_cfg) as coord:
            coord.get_control().start_saving_data(StartSavingCsvConfig(out_dir="out.braidz"))
            coord.consume_stream(source, expected_framerate=100.0)

    Args:
        camera_manager: Registry of connected cameras.
        recon: Calibration. Without one, records are persisted but not tracked.
        tracking_params: Kalman and association parameters.
        storage_config: Archive writer options.
    """

    def __init__(
        self,
        camera_manager: ConnectedCamerasManager,
        recon: Optional[MultiCameraSystem],
        tracking_params: Optional[TrackingParams] = None,
        storage_config: Optional[StorageConfig] = None,
    ):
        self.camera_manager = camera_manager
        self.recon = recon
        self.tracking_params = tracking_params or TrackingParams()
        self.storage_config = storage_config or StorageConfig()
        self.listeners: List[Any] = []
        self.model_collection: Optional[CollectionFrameDone] = None
        self.stats = CoordStats()
        self._closed = False

        self._writer_queue: queue.Queue = queue.Queue(maxsize=WRITER_QUEUE_SIZE)
        self.writer = ArchiveWriter(
            self._writer_queue,
            tracking_params=self.tracking_params,
            calibration=recon,
            camera_manager=camera_manager,
            save_empty_data2d=self.storage_config.save_empty_data2d,
            ignore_latency=self.storage_config.ignore_latency,
            estimates_buffer_frames=self.storage_config.estimates_buffer_frames,
        )
        self.writer.start()

    def __enter__(self) -> "CoordProcessor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get_control(self) -> CoordProcessorControl:
        return CoordProcessorControl(self)

    def add_listener(self, channel: Any) -> None:
        """
        Register a listener channel.

        The channel must provide `put((event, tdpt))`; it receives every
        lifecycle event and, when a calibration is present, the calibration
        first.
        """
        self.listeners.append(channel)

    def send(self, msg: Any) -> None:
        """
        Enqueue a message for the archive writer, blocking while the queue is full.

        Raises:
            FatalPipelineError: If the writer has stopped.
        """
        while True:
            if not self.writer.is_alive():
                raise FatalPipelineError(
                    "writer-alive",
                    f"archive writer is not running, cannot send {type(msg).__name__}: {self.writer.error}",
                )
            try:
                self._writer_queue.put(msg, timeout=SEND_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def _tee(self, stream: Iterable[StreamItem]) -> Iterator[StreamItem]:
        """Persist a copy of every raw record before it is bundled."""
        for item in stream:
            if not isinstance(item, EndOfStream):
                check_frame_representable(item.frame_data.synced_frame)
                self.stats.records += 1
                self.send(Data2dDistorted(item))
            yield item

    def consume_stream(self, stream: Iterable[StreamItem], expected_framerate: Optional[float] = None) -> CoordStats:
        """
        Process a record stream to completion.

        Args:
            stream: Per-camera records in arrival order.
            expected_framerate: Frame rate in Hz, required when a calibration is set.

        Returns:
            Counters for this run.

        Raises:
            ConfigurationError: If a calibration is set but no frame rate is given.
            FatalPipelineError: On an impossible frame number, a frame number
                going backwards, or a stopped archive writer.
            ListenerError: If a listener rejects an event.
        """
        self.stats = CoordStats()

        if self.recon is not None:
            if expected_framerate is None or expected_framerate <= 0:
                raise ConfigurationError("expected framerate must be set when a calibration is present")
            self.model_collection = initialize_model_collection(
                self.tracking_params, self.recon, expected_framerate, self.send
            )
            broadcast(self.listeners, [Calibration(self.recon.to_dict())], TimeDataPassthrough(0, None))
        else:
            logging.warning("No calibration; 2D data will be saved but not tracked")

        previous: Optional[int] = None
        for bundle in make_contiguous(bundle_frames(self._tee(stream), self.camera_manager)):
            frame = bundle.frame()
            if previous is not None and frame < previous:
                raise FatalPipelineError(
                    "non-decreasing-frame",
                    f"frame number decreased from {previous} to {frame}",
                    frame=frame,
                )
            previous = frame
            self.stats.bundles += 1
            if not bundle.inner:
                self.stats.gap_frames += 1

            if self.model_collection is not None:
                self._process_bundle(bundle.undistort(self.recon))

        elapsed = time.time() - self.stats.start_time
        logging.info(
            f"Stream done: {self.stats.records} records, {self.stats.bundles} frames "
            f"({self.stats.gap_frames} empty) in {elapsed:.1f}s"
        )
        return self.stats

    def _process_bundle(self, bundle: UndistortedBundle) -> None:
        predicted = self.model_collection.predict_motion()
        with_likes = predicted.compute_observation_likes(bundle)
        updated, unused = with_likes.solve_data_association_and_update()
        self.model_collection = updated.births_and_deaths(unused, self.listeners)

    def close(self) -> None:
        """
        Stop the archive writer, closing any open recording.

        Raises:
            FatalPipelineError: If the writer failed.
        """
        if self._closed:
            return
        self._closed = True
        if self.writer.is_alive():
            self.send(Shutdown())
        self.writer.join()
        if self.writer.error is not None:
            raise FatalPipelineError("writer-io", f"archive writer failed: {self.writer.error}") from self.writer.error
        logging.info("Coordinator closed")
