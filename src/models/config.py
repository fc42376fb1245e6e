"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HypothesisTestParams:
    """Parameters of the new-object (birth) hypothesis test."""
    minimum_number_of_cameras: int = 2
    hypothesis_test_max_acceptable_error: float = 5.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HypothesisTestParams":
        return cls(
            minimum_number_of_cameras=d.get("minimum_number_of_cameras", 2),
            hypothesis_test_max_acceptable_error=d.get("hypothesis_test_max_acceptable_error", 5.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minimum_number_of_cameras": self.minimum_number_of_cameras,
            "hypothesis_test_max_acceptable_error": self.hypothesis_test_max_acceptable_error,
        }


@dataclass
class TrackingParams:
    """
    Kalman filter and data association parameters.

    Attributes:
        motion_noise_scale: Process noise (acceleration variance) of the
            constant velocity model.
        initial_position_std_meters: Position standard deviation of a new object.
        initial_vel_std_meters_per_sec: Velocity standard deviation of a new object.
        ekf_observation_covariance_pixels: Observation noise variance in pixels.
        accept_observation_max_distance_pixels: Gating threshold for associating
            a detection with an existing object.
        max_frames_unassigned: Consecutive unassigned frames tolerated before
            an object is removed.
        hypothesis_test_params: Birth test parameters.
    """
    motion_noise_scale: float = 0.1
    initial_position_std_meters: float = 0.1
    initial_vel_std_meters_per_sec: float = 1.0
    ekf_observation_covariance_pixels: float = 1.0
    accept_observation_max_distance_pixels: float = 10.0
    max_frames_unassigned: int = 10
    hypothesis_test_params: HypothesisTestParams = field(default_factory=HypothesisTestParams)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrackingParams":
        return cls(
            motion_noise_scale=d.get("motion_noise_scale", 0.1),
            initial_position_std_meters=d.get("initial_position_std_meters", 0.1),
            initial_vel_std_meters_per_sec=d.get("initial_vel_std_meters_per_sec", 1.0),
            ekf_observation_covariance_pixels=d.get("ekf_observation_covariance_pixels", 1.0),
            accept_observation_max_distance_pixels=d.get("accept_observation_max_distance_pixels", 10.0),
            max_frames_unassigned=d.get("max_frames_unassigned", 10),
            hypothesis_test_params=HypothesisTestParams.from_dict(d.get("hypothesis_test_params", {}) or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "motion_noise_scale": self.motion_noise_scale,
            "initial_position_std_meters": self.initial_position_std_meters,
            "initial_vel_std_meters_per_sec": self.initial_vel_std_meters_per_sec,
            "ekf_observation_covariance_pixels": self.ekf_observation_covariance_pixels,
            "accept_observation_max_distance_pixels": self.accept_observation_max_distance_pixels,
            "max_frames_unassigned": self.max_frames_unassigned,
            "hypothesis_test_params": self.hypothesis_test_params.to_dict(),
        }


@dataclass
class StorageConfig:
    """Storage configuration."""
    output_dir: str = "data"
    save_empty_data2d: bool = True
    save_performance_histograms: bool = True
    ignore_latency: bool = False
    estimates_buffer_frames: int = 1000

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StorageConfig":
        return cls(
            output_dir=d.get("output_dir", "data"),
            save_empty_data2d=d.get("save_empty_data2d", True),
            save_performance_histograms=d.get("save_performance_histograms", True),
            ignore_latency=d.get("ignore_latency", False),
            estimates_buffer_frames=d.get("estimates_buffer_frames", 1000),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_dir": self.output_dir,
            "save_empty_data2d": self.save_empty_data2d,
            "save_performance_histograms": self.save_performance_histograms,
            "ignore_latency": self.ignore_latency,
            "estimates_buffer_frames": self.estimates_buffer_frames,
        }


@dataclass
class ServerConfig:
    """Live model server configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8397
    queue_size: int = 100

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ServerConfig":
        return cls(
            enabled=d.get("enabled", False),
            host=d.get("host", "127.0.0.1"),
            port=d.get("port", 8397),
            queue_size=d.get("queue_size", 100),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "host": self.host,
            "port": self.port,
            "queue_size": self.queue_size,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    calibration_path: Optional[str] = None
    fps: float = 100.0
    tracking: TrackingParams = field(default_factory=TrackingParams)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_path: str = "logs/tracker.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            calibration_path=d.get("calibration_path"),
            fps=d.get("fps", 100.0),
            tracking=TrackingParams.from_dict(d.get("tracking", {}) or {}),
            storage=StorageConfig.from_dict(d.get("storage", {}) or {}),
            server=ServerConfig.from_dict(d.get("server", {}) or {}),
            log_path=d.get("log_path", "logs/tracker.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or passing to existing code)."""
        d: Dict[str, Any] = {
            "fps": self.fps,
            "tracking": self.tracking.to_dict(),
            "storage": self.storage.to_dict(),
            "server": self.server.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
        if self.calibration_path is not None:
            d["calibration_path"] = self.calibration_path
        return d
