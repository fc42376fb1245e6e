"""
Tests for detection sources: saved 2D data replay and threaded live cameras.
"""

import csv
import queue
import threading

import pytest

from models.messages import Data2dDistorted, StartSavingCsv, StartSavingCsvConfig, StopSavingCsv
from models.rows import CamInfoRow, Data2dDistortedRow, rows_to_save
from observation import (
    CsvReplaySource,
    CsvReplaySourceConfig,
    FrameReadError,
    ThreadedCameraSource,
    ThreadedCameraSourceConfig,
)
from pipeline.cameras import ConnectedCamerasManager
from storage.writer import ArchiveWriter


def _write_rows(path, row_type, rows):
    with open(path, "w", newline="") as f:
        wtr = csv.DictWriter(f, fieldnames=row_type.fieldnames())
        wtr.writeheader()
        for row in rows:
            wtr.writerow(row.to_dict())


@pytest.fixture
def recording_dir(tmp_path, make_fdp):
    """A directory holding 2D data for two cameras over two frames."""
    records = [make_fdp("a", 0, 1, [(1, 2), (3, 4)]), make_fdp("b", 1, 1), make_fdp("a", 0, 2, [(5, 6)])]
    rows = [row for fdp in records for row in rows_to_save(fdp, save_empty_data2d=True)]
    _write_rows(tmp_path / "data2d_distorted.csv", Data2dDistortedRow, rows)
    _write_rows(tmp_path / "cam_info.csv", CamInfoRow, [CamInfoRow(0, "a"), CamInfoRow(1, "b")])
    return tmp_path


class TestCsvReplaySource:
    def test_groups_rows_into_records(self, recording_dir):
        """Consecutive rows of one camera and frame form one record."""
        with CsvReplaySource(CsvReplaySourceConfig(path=str(recording_dir))) as source:
            records = list(source)
            assert source.record_count == 3
            assert source.cam_names() == ["a", "b"]

        assert [(r.frame_data.cam_name, r.frame_data.synced_frame) for r in records] == [
            ("a", 1), ("b", 1), ("a", 2),
        ]
        assert [p.pt.x0_abs for p in records[0].points] == [1.0, 3.0]
        assert [p.idx for p in records[0].points] == [0, 1]
        assert records[1].points == ()
        assert records[0].frame_data.device_timestamp is None
        assert records[0].points[0].pt.slope_eccentricity is None

    def test_accepts_file_path(self, recording_dir):
        config = CsvReplaySourceConfig(path=str(recording_dir / "data2d_distorted.csv"))
        with CsvReplaySource(config) as source:
            assert len(list(source)) == 3

    def test_unknown_camera_number_named(self, recording_dir):
        """Without camera info, cameras are named after their number."""
        (recording_dir / "cam_info.csv").unlink()

        with CsvReplaySource(CsvReplaySourceConfig(path=str(recording_dir))) as source:
            names = [r.frame_data.cam_name for r in source]

        assert names == ["cam0", "cam1", "cam0"]

    def test_missing_file(self, tmp_path):
        source = CsvReplaySource(CsvReplaySourceConfig(path=str(tmp_path)))

        with pytest.raises(RuntimeError):
            source.open()

    def test_iterating_closed_source_raises(self, recording_dir):
        source = CsvReplaySource(CsvReplaySourceConfig(path=str(recording_dir)))

        with pytest.raises(RuntimeError):
            list(source)

    def test_replays_saved_recording(self, make_fdp, tmp_path):
        """Data saved by the archive writer replays into the same records."""
        out_dir = tmp_path / "rec"
        writer = ArchiveWriter(queue.Queue(), camera_manager=ConnectedCamerasManager(["a", "b"]))
        writer.handle(StartSavingCsv(StartSavingCsvConfig(out_dir=str(out_dir))))
        originals = [make_fdp("a", 0, 7, [(10, 20)], trigger_timestamp=5.0), make_fdp("b", 1, 7)]
        for fdp in originals:
            writer.handle(Data2dDistorted(fdp))
        writer.handle(StopSavingCsv())

        with CsvReplaySource(CsvReplaySourceConfig(path=str(out_dir))) as source:
            replayed = list(source)

        assert [r.frame_data.cam_name for r in replayed] == ["a", "b"]
        assert replayed[0].frame_data.trigger_timestamp == 5.0
        assert replayed[0].points[0].pt.x0_abs == 10.0
        assert replayed[1].points == ()


class FakeCamera:
    """Camera yielding prepared results, then failing to end its thread."""

    def __init__(self, name, results):
        self.name = name
        self._results = list(results)
        self.exhausted = threading.Event()
        self.closed = False

    def next_frame(self):
        if not self._results:
            self.exhausted.set()
            raise EOFError("no more frames")
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


class TestThreadedCameraSource:
    def test_reads_until_cameras_stop(self, make_fdp):
        """Records from every camera are read; read errors are skipped."""
        cam_a = FakeCamera("a", [make_fdp("a", 0, 1), FrameReadError("glitch"), make_fdp("a", 0, 2)])
        cam_b = FakeCamera("b", [make_fdp("b", 1, 1)])
        source = ThreadedCameraSource(ThreadedCameraSourceConfig(), [cam_a, cam_b])

        with source:
            records = list(source)

        assert sorted((r.frame_data.cam_name, r.frame_data.synced_frame) for r in records) == [
            ("a", 1), ("a", 2), ("b", 1),
        ]
        assert set(source.errors()) == {"a", "b"}
        assert cam_a.closed and cam_b.closed
        assert not source.is_open

    def test_full_queue_drops_newest(self, make_fdp):
        """With a full queue, later records are dropped and counted."""
        cam = FakeCamera("a", [make_fdp("a", 0, f) for f in range(5)])
        source = ThreadedCameraSource(ThreadedCameraSourceConfig(queue_size=2), [cam])

        with source:
            assert cam.exhausted.wait(timeout=5.0)
            records = list(source)

        assert [r.frame_data.synced_frame for r in records] == [0, 1]
        assert source.num_dropped == 3

    def test_device_access(self):
        cam = FakeCamera("a", [])
        source = ThreadedCameraSource(ThreadedCameraSourceConfig(), [cam])

        with source.device("a") as device:
            assert device is cam

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            ThreadedCameraSource(ThreadedCameraSourceConfig(), [FakeCamera("a", []), FakeCamera("a", [])])
