"""
Smoke tests for configuration loading and validation.
"""

import pytest

from main import load_config, validate_config
from models.config import Config, TrackingParams
from models.errors import ConfigurationError


class TestValidateConfig:
    """Tests for validate_config function."""

    def test_valid_config_passes(self, valid_config):
        """A complete valid config passes validation."""
        is_valid, error = validate_config(valid_config)

        assert is_valid is True
        assert error is None

    def test_missing_tracking_section(self, valid_config):
        """Missing tracking section fails validation."""
        del valid_config["tracking"]

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "tracking" in error.lower()

    def test_missing_storage_section(self, valid_config):
        """Missing storage section fails validation."""
        del valid_config["storage"]

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "storage" in error.lower()

    def test_missing_log_path(self, valid_config):
        """Missing log_path fails validation."""
        del valid_config["log_path"]

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "log_path" in error.lower()

    def test_invalid_fps(self, valid_config):
        """Non-positive fps fails validation."""
        valid_config["fps"] = 0

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "fps" in error

    def test_negative_gate(self, valid_config):
        """Gating threshold must be positive."""
        valid_config["tracking"]["accept_observation_max_distance_pixels"] = -1.0

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "accept_observation_max_distance_pixels" in error

    def test_max_frames_unassigned_must_be_int(self, valid_config):
        """Death threshold must be an integer."""
        valid_config["tracking"]["max_frames_unassigned"] = 2.5

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "max_frames_unassigned" in error

    def test_minimum_cameras_at_least_two(self, valid_config):
        """A birth needs at least two cameras."""
        valid_config["tracking"]["hypothesis_test_params"]["minimum_number_of_cameras"] = 1

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "minimum_number_of_cameras" in error

    def test_invalid_server_port(self, valid_config):
        """Port outside 1-65535 fails validation."""
        valid_config["server"]["port"] = 70000

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "server.port" in error

    def test_invalid_log_level(self, valid_config):
        """Unknown log level fails validation."""
        valid_config["log_level"] = "VERBOSE"

        is_valid, error = validate_config(valid_config)

        assert is_valid is False
        assert "log_level" in error


class TestLoadConfig:
    """Tests for layered config loading."""

    def test_loads_default_yaml(self, temp_config_dir):
        """Default.yaml is loaded when no overrides exist."""
        config = load_config(str(temp_config_dir / "config.yaml"))

        assert config["fps"] == 100.0
        assert config["tracking"]["max_frames_unassigned"] == 10

    def test_local_overrides_merge(self, temp_config_dir):
        """config.yaml overrides values from default.yaml."""
        (temp_config_dir / "config.yaml").write_text("""
fps: 60.0
log_level: "DEBUG"
""")
        config = load_config(str(temp_config_dir / "config.yaml"))

        assert config["fps"] == 60.0
        assert config["log_level"] == "DEBUG"
        assert config["log_path"] == "logs/test.log"

    def test_deep_merge_preserves_nested(self, temp_config_dir):
        """Overriding one nested key keeps its siblings."""
        explicit = temp_config_dir / "experiment.yaml"
        explicit.write_text("""
tracking:
  hypothesis_test_params:
    minimum_number_of_cameras: 3
""")
        config = load_config(str(explicit))

        hyp = config["tracking"]["hypothesis_test_params"]
        assert hyp["minimum_number_of_cameras"] == 3
        assert hyp["hypothesis_test_max_acceptable_error"] == 5.0
        assert config["tracking"]["motion_noise_scale"] == 0.1

    def test_invalid_yaml_raises(self, temp_config_dir):
        """Unparseable YAML is a configuration error."""
        (temp_config_dir / "config.yaml").write_text("fps: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(str(temp_config_dir / "config.yaml"))


class TestConfigModels:
    """Tests for typed config dataclasses."""

    def test_from_dict_fills_defaults(self):
        """Missing sections fall back to defaults."""
        cfg = Config.from_dict({"fps": 50.0})

        assert cfg.fps == 50.0
        assert cfg.tracking == TrackingParams()
        assert cfg.storage.estimates_buffer_frames == 1000
        assert cfg.server.enabled is False

    def test_from_dict_reads_nested(self, valid_config):
        """Nested tracking parameters are parsed."""
        valid_config["tracking"]["hypothesis_test_params"]["minimum_number_of_cameras"] = 3
        cfg = Config.from_dict(valid_config)

        assert cfg.tracking.hypothesis_test_params.minimum_number_of_cameras == 3
        assert cfg.to_dict()["tracking"]["hypothesis_test_params"]["minimum_number_of_cameras"] == 3
