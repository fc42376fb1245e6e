"""
Pytest configuration and shared fixtures.
"""

import os
import sys

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from geometry.camera import Camera, MultiCameraSystem  # noqa: E402
from models.config import HypothesisTestParams, TrackingParams  # noqa: E402
from models.detection import FrameData, FrameDataAndPoints, RawPoint  # noqa: E402


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
fps: 100.0

tracking:
  motion_noise_scale: 0.1
  accept_observation_max_distance_pixels: 10.0
  max_frames_unassigned: 10
  hypothesis_test_params:
    minimum_number_of_cameras: 2
    hypothesis_test_max_acceptable_error: 5.0

storage:
  output_dir: "data"
  save_empty_data2d: true

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "calibration_path": None,
        "fps": 100.0,
        "tracking": {
            "motion_noise_scale": 0.1,
            "initial_position_std_meters": 0.1,
            "initial_vel_std_meters_per_sec": 1.0,
            "ekf_observation_covariance_pixels": 1.0,
            "accept_observation_max_distance_pixels": 10.0,
            "max_frames_unassigned": 10,
            "hypothesis_test_params": {
                "minimum_number_of_cameras": 2,
                "hypothesis_test_max_acceptable_error": 5.0,
            },
        },
        "storage": {
            "output_dir": "data",
            "save_empty_data2d": True,
            "save_performance_histograms": True,
        },
        "server": {
            "enabled": False,
            "port": 8397,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


@pytest.fixture
def rig():
    """Three undistorted cameras around the origin, all looking at (0, 0, 0.5)."""
    target = (0.0, 0.0, 0.5)
    return MultiCameraSystem([
        Camera.look_at("cam1", eye=(3.0, 0.0, 1.0), target=target),
        Camera.look_at("cam2", eye=(0.0, 3.0, 1.0), target=target),
        Camera.look_at("cam3", eye=(-2.0, -2.0, 2.0), target=target),
    ])


@pytest.fixture
def tracking_params():
    """Tracking parameters with a short death threshold."""
    return TrackingParams(
        motion_noise_scale=0.1,
        initial_position_std_meters=0.1,
        initial_vel_std_meters_per_sec=1.0,
        ekf_observation_covariance_pixels=1.0,
        accept_observation_max_distance_pixels=10.0,
        max_frames_unassigned=2,
        hypothesis_test_params=HypothesisTestParams(
            minimum_number_of_cameras=2,
            hypothesis_test_max_acceptable_error=5.0,
        ),
    )


@pytest.fixture
def make_fdp():
    """Factory for per-camera records."""

    def _make(cam_name, cam_num, frame, pixels=(), trigger_timestamp=None, received=1000.0):
        frame_data = FrameData(
            cam_name=cam_name,
            cam_num=cam_num,
            synced_frame=frame,
            trigger_timestamp=trigger_timestamp,
            cam_received_timestamp=received,
        )
        points = [RawPoint(x0_abs=float(x), y0_abs=float(y), area=4.0) for x, y in pixels]
        return FrameDataAndPoints.from_points(frame_data, points)

    return _make


@pytest.fixture
def observe(rig, make_fdp):
    """Factory projecting 3D points into every rig camera as one record per camera."""

    def _observe(frame, points3d, trigger_timestamp=None):
        records = []
        for cam_num, cam in enumerate(rig.cameras()):
            pixels = [cam.project_3d_to_pixel(np.asarray(p)) for p in points3d]
            records.append(make_fdp(cam.name, cam_num, frame, pixels, trigger_timestamp=trigger_timestamp))
        return records

    return _observe
