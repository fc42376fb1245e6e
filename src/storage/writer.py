"""
Archive writer.

Runs on its own thread, owns every output file handle, and writes the
recording session layout in response to messages from the coordinator.
"""

from __future__ import annotations

import csv
import logging
import os
import queue
import shutil
import threading
import time
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, IO, List, Optional

import yaml

from models.config import TrackingParams
from models.errors import ConfigurationError
from models.messages import (
    Data2dDistorted,
    KalmanEstimate,
    SetExperimentUuid,
    Shutdown,
    StartSavingCsv,
    StartSavingCsvConfig,
    StopSavingCsv,
    Textlog,
    TriggerClockInfo,
)
from models.rows import (
    CamInfoRow,
    Data2dDistortedRow,
    DataAssocRow,
    ExperimentInfoRow,
    KalmanEstimatesRow,
    Row,
    TextlogRow,
    TriggerClockInfoRow,
    rows_to_save,
)

from .histograms import HistogramRecorder
from .ordering_writer import DEFAULT_BUFFER_FRAMES, OrderingWriter

DATA2D_DISTORTED_CSV = "data2d_distorted.csv"
KALMAN_ESTIMATES_CSV = "kalman_estimates.csv"
DATA_ASSOCIATE_CSV = "data_association.csv"
TEXTLOG_CSV = "textlog.csv"
TRIGGER_CLOCK_INFO_CSV = "trigger_clock_info.csv"
EXPERIMENT_INFO_CSV = "experiment_info.csv"
CAM_INFO_CSV = "cam_info.csv"
BRAID_METADATA_YML = "braid_metadata.yml"
CALIBRATION_YML = "calibration.yml"
IMAGES_DIR = "images"
CAM_SETTINGS_DIR = "cam_settings"
RECONSTRUCT_LATENCY_HLOG = "reconstruct_latency_usec"
REPROJECTION_DIST_HLOG = "reprojection_distance_100x_pixels"

BRAIDZ_SUFFIX = ".braidz"
FLUSH_INTERVAL_SECONDS = 1.0
SAVING_PROGRAM_NAME = "multicam-tracker"
METADATA_SCHEMA = 1


def _open_csv(path: Path, row_type) -> tuple:
    fd = open(path, "w", newline="")
    wtr = csv.DictWriter(fd, fieldnames=row_type.fieldnames())
    wtr.writeheader()
    return fd, wtr


def prepare_output_dir(config: StartSavingCsvConfig) -> Path:
    """
    Create the working directory a recording session writes into.

    A ".braidz" output is written to a sibling ".braid" directory and zipped
    on stop.

    Raises:
        ConfigurationError: If the directory is unset or cannot be created,
            or the frame rate is not positive.
    """
    if not config.out_dir:
        raise ConfigurationError("recording output directory must not be empty")
    if config.fps is not None and config.fps <= 0:
        raise ConfigurationError(f"recording fps must be positive, got {config.fps}")
    if config.out_dir.endswith(BRAIDZ_SUFFIX):
        output_dir = Path(config.out_dir[: -len(BRAIDZ_SUFFIX)] + ".braid")
    else:
        output_dir = Path(config.out_dir)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create recording directory {output_dir}: {e}") from e
    return output_dir


class RecordingSession:
    """
    Open file handles of one recording.

    Args:
        config: Session configuration.
        tracking_params: Parameters saved into the session metadata.
        calibration: Calibration to save, if any.
        cam_info: Camera number assignments.
        save_empty_data2d: Write a NaN row for records without detections.
        ignore_latency: Do not record reconstruction latency.
        estimates_buffer_frames: Frames held by the estimate reordering buffer.
    """

    def __init__(
        self,
        config: StartSavingCsvConfig,
        tracking_params: Optional[TrackingParams] = None,
        calibration=None,
        cam_info: Optional[List[CamInfoRow]] = None,
        save_empty_data2d: bool = True,
        ignore_latency: bool = False,
        estimates_buffer_frames: int = DEFAULT_BUFFER_FRAMES,
    ):
        self.config = config
        self.save_empty_data2d = save_empty_data2d
        self.ignore_latency = ignore_latency
        self.started_at = time.time()

        self.final_path = Path(config.out_dir)
        self.zip_on_close = config.out_dir.endswith(BRAIDZ_SUFFIX)
        self.output_dir = prepare_output_dir(config)

        self.num_estimates = 0
        self.num_data2d_rows = 0
        self._files: List[IO] = []
        self._writers: Dict[str, Any] = {}

        for name, row_type in (
            (DATA2D_DISTORTED_CSV, Data2dDistortedRow),
            (DATA_ASSOCIATE_CSV, DataAssocRow),
            (TEXTLOG_CSV, TextlogRow),
            (TRIGGER_CLOCK_INFO_CSV, TriggerClockInfoRow),
            (EXPERIMENT_INFO_CSV, ExperimentInfoRow),
        ):
            fd, wtr = _open_csv(self.output_dir / name, row_type)
            self._files.append(fd)
            self._writers[name] = wtr

        fd, wtr = _open_csv(self.output_dir / KALMAN_ESTIMATES_CSV, KalmanEstimatesRow)
        self.kalman_estimates = OrderingWriter(wtr, fd, buffer_size=estimates_buffer_frames)

        self._write_cam_info(cam_info or [])
        self._write_per_cam_data()
        self._write_metadata(tracking_params)
        if calibration is not None:
            (self.output_dir / CALIBRATION_YML).write_text(calibration.to_yaml())

        self.reconstruct_latency = HistogramRecorder(self.started_at)
        self.reproj_dist = HistogramRecorder(self.started_at)

        self.write_textlog(
            TextlogRow(
                mainloop_timestamp=self.started_at,
                cam_id="mainbrain",
                host_timestamp=self.started_at,
                message=f"starting recording, fps: {config.fps}, git revision: {config.git_rev}",
            )
        )
        logging.info(f"Saving data to {self.output_dir}")

    def _write_cam_info(self, cam_info: List[CamInfoRow]) -> None:
        with open(self.output_dir / CAM_INFO_CSV, "w", newline="") as fd:
            wtr = csv.DictWriter(fd, fieldnames=CamInfoRow.fieldnames())
            wtr.writeheader()
            for row in cam_info:
                wtr.writerow(row.to_dict())

    def _write_per_cam_data(self) -> None:
        for cam_name, data in sorted(self.config.per_cam_data.items()):
            if data.current_image_png is not None:
                images_dir = self.output_dir / IMAGES_DIR
                images_dir.mkdir(exist_ok=True)
                (images_dir / f"{cam_name}.png").write_bytes(data.current_image_png)
            if data.cam_settings_data is not None:
                settings_dir = self.output_dir / CAM_SETTINGS_DIR
                settings_dir.mkdir(exist_ok=True)
                with open(settings_dir / f"{cam_name}.yml", "w") as f:
                    yaml.safe_dump(data.cam_settings_data, f, default_flow_style=False)

    def _write_metadata(self, tracking_params: Optional[TrackingParams]) -> None:
        local = self.config.local or datetime.now().astimezone()
        metadata = {
            "schema": METADATA_SCHEMA,
            "git_revision": self.config.git_rev,
            "original_recording_time": local.isoformat(),
            "save_empty_data2d": self.save_empty_data2d,
            "saving_program_name": SAVING_PROGRAM_NAME,
            "fps": self.config.fps,
            "tracking_params": tracking_params.to_dict() if tracking_params is not None else None,
        }
        with open(self.output_dir / BRAID_METADATA_YML, "w") as f:
            yaml.safe_dump(metadata, f, default_flow_style=False, sort_keys=False)

    def _write_row(self, name: str, row: Row) -> None:
        self._writers[name].writerow(row.to_dict())

    def write_textlog(self, row: TextlogRow) -> None:
        self._write_row(TEXTLOG_CSV, row)

    def write_trigger_clock_info(self, row: TriggerClockInfoRow) -> None:
        self._write_row(TRIGGER_CLOCK_INFO_CSV, row)

    def write_experiment_uuid(self, uuid: str) -> None:
        self._write_row(EXPERIMENT_INFO_CSV, ExperimentInfoRow(uuid=uuid))

    def write_estimate(self, msg: KalmanEstimate, now: float) -> None:
        record = msg.record
        self.kalman_estimates.serialize(record.record)
        for row in record.data_assoc_rows:
            self._write_row(DATA_ASSOCIATE_CSV, row)
        if record.mean_reproj_dist_100x is not None:
            self.reproj_dist.record(record.mean_reproj_dist_100x, now)
        self.num_estimates += 1

    def write_data2d(self, msg: Data2dDistorted, now: float) -> None:
        fdp = msg.fdp
        for row in rows_to_save(fdp, self.save_empty_data2d):
            self._write_row(DATA2D_DISTORTED_CSV, row)
            self.num_data2d_rows += 1
        trigger_timestamp = fdp.frame_data.trigger_timestamp
        if not self.ignore_latency and trigger_timestamp is not None:
            latency_usec = int((now - trigger_timestamp) * 1e6)
            self.reconstruct_latency.record(latency_usec, now)

    def flush(self) -> None:
        for fd in self._files:
            fd.flush()
        self.kalman_estimates.flush()

    def close(self) -> Path:
        """
        Drain and close every file, write histogram logs and zip if needed.

        Returns:
            Final path of the recording.
        """
        try:
            self.kalman_estimates.close()
        finally:
            for fd in self._files:
                fd.close()

        now = time.time()
        if self.config.save_performance_histograms:
            for recorder, name in (
                (self.reconstruct_latency, RECONSTRUCT_LATENCY_HLOG),
                (self.reproj_dist, REPROJECTION_DIST_HLOG),
            ):
                recorder.finish(now)
                recorder.save_hlog(self.output_dir, name)

        if self.config.print_stats:
            logging.info(
                f"Recording {self.final_path}: {self.num_estimates} estimates, "
                f"{self.num_data2d_rows} 2d rows"
            )

        if self.zip_on_close:
            _zip_dir(self.output_dir, self.final_path)
            shutil.rmtree(self.output_dir)
        logging.info(f"Finished saving {self.final_path}")
        return self.final_path


def _zip_dir(src_dir: Path, dest: Path) -> None:
    with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for root, _dirs, files in os.walk(src_dir):
            for name in sorted(files):
                path = Path(root) / name
                zf.write(path, arcname=str(path.relative_to(src_dir)))


class ArchiveWriter:
    """
    Consumes storage messages on a background thread until `Shutdown`.

    Messages other than `StartSavingCsv` that arrive while no recording is
    open are discarded. An I/O error ends the thread; the error is kept in
    `error` for the owner to re-raise.

    Args:
        rx: Queue of storage messages.
        tracking_params: Parameters saved into session metadata.
        calibration: Calibration saved with every session, if any.
        camera_manager: Source of the camera number assignments.
        save_empty_data2d: Write a NaN row for records without detections.
        ignore_latency: Do not record reconstruction latency.
        estimates_buffer_frames: Frames held by the estimate reordering buffer.
    """

    def __init__(
        self,
        rx: queue.Queue,
        tracking_params: Optional[TrackingParams] = None,
        calibration=None,
        camera_manager=None,
        save_empty_data2d: bool = True,
        ignore_latency: bool = False,
        estimates_buffer_frames: int = DEFAULT_BUFFER_FRAMES,
    ):
        self._rx = rx
        self.tracking_params = tracking_params
        self.calibration = calibration
        self.camera_manager = camera_manager
        self.save_empty_data2d = save_empty_data2d
        self.ignore_latency = ignore_latency
        self.estimates_buffer_frames = estimates_buffer_frames

        self.session: Optional[RecordingSession] = None
        self.error: Optional[BaseException] = None
        self.saved_paths: List[Path] = []
        self._thread: Optional[threading.Thread] = None
        self._last_flush = time.monotonic()

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="archive-writer", daemon=True)
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Message loop. Runs until `Shutdown` or an error."""
        try:
            while True:
                try:
                    msg = self._rx.get(timeout=FLUSH_INTERVAL_SECONDS)
                except queue.Empty:
                    msg = None

                if isinstance(msg, Shutdown):
                    break
                if msg is not None:
                    self.handle(msg)

                if time.monotonic() - self._last_flush >= FLUSH_INTERVAL_SECONDS:
                    self.flush()
        except Exception as e:
            logging.error(f"Archive writer failed: {e}")
            self.error = e
        finally:
            try:
                self._stop_session()
            except Exception as e:
                logging.error(f"Archive writer failed to close recording: {e}")
                if self.error is None:
                    self.error = e
        logging.debug("Archive writer stopped")

    def handle(self, msg) -> None:
        """Apply one storage message."""
        now = time.time()
        if isinstance(msg, StartSavingCsv):
            if self.session is not None:
                logging.info("Already saving; closing current recording first")
                self._stop_session()
            cam_info = self.camera_manager.cam_info_rows() if self.camera_manager is not None else []
            self.session = RecordingSession(
                msg.config,
                tracking_params=self.tracking_params,
                calibration=self.calibration,
                cam_info=cam_info,
                save_empty_data2d=self.save_empty_data2d,
                ignore_latency=self.ignore_latency,
                estimates_buffer_frames=self.estimates_buffer_frames,
            )
            return
        if isinstance(msg, StopSavingCsv):
            self._stop_session()
            return

        if self.session is None:
            logging.debug(f"Not saving; discarding {type(msg).__name__}")
            return

        if isinstance(msg, KalmanEstimate):
            self.session.write_estimate(msg, now)
        elif isinstance(msg, Data2dDistorted):
            self.session.write_data2d(msg, now)
        elif isinstance(msg, Textlog):
            self.session.write_textlog(msg.row)
        elif isinstance(msg, TriggerClockInfo):
            self.session.write_trigger_clock_info(msg.row)
        elif isinstance(msg, SetExperimentUuid):
            self.session.write_experiment_uuid(msg.uuid)
        else:
            raise TypeError(f"unknown storage message {msg!r}")

    def flush(self) -> None:
        if self.session is not None:
            self.session.flush()
        self._last_flush = time.monotonic()

    def _stop_session(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            self.saved_paths.append(session.close())
