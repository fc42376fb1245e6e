"""
Tests for the command line entry point, replay runner and logging setup.
"""

import csv
import io
import logging
import queue
import sys
import zipfile

import pytest

from main import default_output_path, main, run_replay
from models.config import Config, StorageConfig
from models.errors import ConfigurationError
from models.messages import Data2dDistorted, StartSavingCsv, StartSavingCsvConfig, StopSavingCsv
from ops.logging import setup_logging
from pipeline.cameras import ConnectedCamerasManager
from storage.writer import ArchiveWriter


@pytest.fixture
def saved_recording(rig, observe, tmp_path):
    """2D data of one object slowly moving in front of the rig, as saved by a live run."""
    out_dir = tmp_path / "live"
    writer = ArchiveWriter(queue.Queue(), camera_manager=ConnectedCamerasManager(rig.cam_names))
    writer.handle(StartSavingCsv(StartSavingCsvConfig(out_dir=str(out_dir))))
    for frame in range(8):
        for fdp in observe(frame, [(0.0, 0.004 * frame, 0.6)]):
            writer.handle(Data2dDistorted(fdp))
    writer.handle(StopSavingCsv())
    return out_dir


@pytest.fixture
def calibration_path(rig, tmp_path):
    path = tmp_path / "calibration.yml"
    path.write_text(rig.to_yaml())
    return path


@pytest.fixture
def root_logging():
    """Restore root logger handlers changed by setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestRunReplay:
    def test_replay_tracks_saved_data(self, saved_recording, calibration_path, tracking_params, tmp_path):
        """Replaying saved 2D data produces a zipped recording with one tracked object."""
        cfg = Config(calibration_path=str(calibration_path), fps=100.0, tracking=tracking_params)
        output_path = tmp_path / "out.braidz"

        stats = run_replay(cfg, str(saved_recording), str(output_path))

        assert stats.records == 24
        assert stats.bundles == 8
        with zipfile.ZipFile(output_path) as zf:
            estimates = list(csv.DictReader(io.StringIO(zf.read("kalman_estimates.csv").decode())))
            cam_info = list(csv.DictReader(io.StringIO(zf.read("cam_info.csv").decode())))
        assert {r["obj_id"] for r in estimates} == {"0"}
        assert len(estimates) == 8
        assert [r["cam_id"] for r in cam_info] == ["cam1", "cam2", "cam3"]

    def test_replay_without_calibration(self, saved_recording, tmp_path):
        cfg = Config(storage=StorageConfig(save_performance_histograms=False))
        output_path = tmp_path / "out"

        stats = run_replay(cfg, str(saved_recording), str(output_path))

        assert stats.records == 24
        assert (output_path / "data2d_distorted.csv").exists()
        assert not (output_path / "calibration.yml").exists()

    def test_missing_calibration_raises(self, saved_recording, tmp_path):
        cfg = Config(calibration_path=str(tmp_path / "missing.yml"))

        with pytest.raises(ConfigurationError):
            run_replay(cfg, str(saved_recording), str(tmp_path / "out"))


class TestMain:
    def test_invalid_config_exits(self, tmp_path, monkeypatch):
        """An invalid configuration stops the program with exit code 1."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("fps: -1\ntracking: {}\nstorage: {}\nlog_path: x.log\nlog_level: INFO\n")
        monkeypatch.setattr(sys, "argv", ["multicam-tracker", "--config", str(config_path), "--input", "x"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1

    def test_missing_calibration_exits(self, saved_recording, tmp_path, monkeypatch, root_logging):
        """A calibration file that cannot be loaded stops the program with exit code 1."""
        config_path = tmp_path / "run.yaml"
        config_path.write_text(
            f"fps: 100.0\ntracking: {{}}\nstorage: {{}}\nlog_path: {tmp_path / 'run.log'}\nlog_level: INFO\n"
        )
        monkeypatch.setattr(sys, "argv", [
            "multicam-tracker", "--config", str(config_path), "--input", str(saved_recording),
            "--output", str(tmp_path / "out"), "--calibration", str(tmp_path / "missing.yml"),
        ])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert not (tmp_path / "out").exists()

    def test_default_output_path(self):
        path = default_output_path("data")

        assert path.startswith("data")
        assert path.endswith(".braidz")


class TestSetupLogging:
    def test_logs_to_file(self, tmp_path, root_logging):
        log_path = tmp_path / "logs" / "tracker.log"

        setup_logging(str(log_path), "debug")
        logging.debug("hello from test")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert logging.getLogger().level == logging.DEBUG
        assert "hello from test" in log_path.read_text()

    def test_unknown_level_rejected(self, root_logging):
        with pytest.raises(ValueError):
            setup_logging(None, "LOUD")
