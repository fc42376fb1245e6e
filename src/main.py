"""
Multi-camera 3D point tracker.

Replays saved per-camera 2D detections through the tracking pipeline and
saves the raw data, 3D estimates and data association to a recording.

Usage:
    python src/main.py --config config/config.yaml --input recording.braid

Arguments:
    --config: Path to configuration file
    --input: Recording directory or data2d_distorted.csv to replay
    --output: Output recording path (".braidz" is zipped when done)
    --calibration: Calibration YAML (overrides calibration_path)
    --serve: Serve live tracking results over HTTP while running
"""

import argparse
import logging
import os
import sys
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

import uvicorn
import yaml

from geometry.camera import load_calibration
from models.config import Config
from models.errors import ConfigurationError, FatalPipelineError, ListenerError
from models.messages import StartSavingCsvConfig
from observation import CsvReplaySource, CsvReplaySourceConfig
from ops.logging import LOG_LEVELS, setup_logging
from pipeline import ConnectedCamerasManager, CoordProcessor, CoordStats
from web.app import create_app
from web.state import ModelServer


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)

    Raises:
        ConfigurationError: If a config file cannot be read or parsed.
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['tracking', 'storage', 'fps', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    if not _is_number(config['fps']) or config['fps'] <= 0:
        return False, "fps must be a positive number"

    calibration_path = config.get('calibration_path')
    if calibration_path is not None and not isinstance(calibration_path, str):
        return False, "calibration_path must be a string"

    # Validate tracking settings
    tracking = config.get('tracking', {}) or {}
    for key in (
        'motion_noise_scale',
        'initial_position_std_meters',
        'initial_vel_std_meters_per_sec',
        'ekf_observation_covariance_pixels',
        'accept_observation_max_distance_pixels',
    ):
        if key in tracking and (not _is_number(tracking[key]) or tracking[key] <= 0):
            return False, f"tracking.{key} must be a positive number"
    if 'max_frames_unassigned' in tracking:
        mfu = tracking['max_frames_unassigned']
        if not isinstance(mfu, int) or mfu < 0:
            return False, "tracking.max_frames_unassigned must be a non-negative integer"

    hypothesis = tracking.get('hypothesis_test_params', {}) or {}
    if 'minimum_number_of_cameras' in hypothesis:
        n = hypothesis['minimum_number_of_cameras']
        if not isinstance(n, int) or n < 2:
            return False, "tracking.hypothesis_test_params.minimum_number_of_cameras must be an integer >= 2"
    if 'hypothesis_test_max_acceptable_error' in hypothesis:
        err = hypothesis['hypothesis_test_max_acceptable_error']
        if not _is_number(err) or err <= 0:
            return False, "tracking.hypothesis_test_params.hypothesis_test_max_acceptable_error must be a positive number"

    # Validate storage settings
    storage = config.get('storage', {}) or {}
    if 'output_dir' in storage and not isinstance(storage['output_dir'], str):
        return False, "storage.output_dir must be a string"
    if 'estimates_buffer_frames' in storage:
        buf = storage['estimates_buffer_frames']
        if not isinstance(buf, int) or buf < 0:
            return False, "storage.estimates_buffer_frames must be a non-negative integer"

    # Validate server settings
    server = config.get('server', {}) or {}
    if 'port' in server:
        port = server['port']
        if not isinstance(port, int) or not (0 < port < 65536):
            return False, "server.port must be an integer between 1 and 65535"
    if 'queue_size' in server:
        if not isinstance(server['queue_size'], int) or server['queue_size'] <= 0:
            return False, "server.queue_size must be a positive integer"

    # Validate log settings
    if config['log_level'] not in LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(LOG_LEVELS)}"

    return True, None


def default_output_path(output_dir: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(output_dir, f"{timestamp}.braidz")


def start_model_server(cfg: Config) -> ModelServer:
    """Start the model server and its HTTP interface on a daemon thread."""
    model_server = ModelServer(queue_size=cfg.server.queue_size)
    model_server.start()

    def run_web_app():
        uvicorn.run(
            create_app(model_server),
            host=cfg.server.host,
            port=cfg.server.port,
            log_level="info",
        )

    web_thread = threading.Thread(target=run_web_app, daemon=True)
    web_thread.start()
    logging.info(f"Model server started on http://{cfg.server.host}:{cfg.server.port}")
    return model_server


def run_replay(
    cfg: Config,
    input_path: str,
    output_path: str,
    listeners: Sequence[Any] = (),
) -> CoordStats:
    """
    Track a saved recording and save the results.

    Args:
        cfg: Application configuration.
        input_path: Recording directory or data2d_distorted.csv.
        output_path: Output recording path.
        listeners: Live listener channels.

    Returns:
        Counters of the run.

    Raises:
        ConfigurationError: If the calibration cannot be loaded or the
            recording cannot be started.
        FatalPipelineError: If the pipeline stops on a violated invariant.
    """
    recon = load_calibration(cfg.calibration_path) if cfg.calibration_path else None

    source = CsvReplaySource(CsvReplaySourceConfig(source_id="replay", path=input_path))
    with source:
        cam_names = source.cam_names() or (recon.cam_names if recon is not None else [])
        camera_manager = ConnectedCamerasManager(cam_names)

        with CoordProcessor(camera_manager, recon, cfg.tracking, cfg.storage) as coord:
            for listener in listeners:
                coord.add_listener(listener)
            control = coord.get_control()
            control.start_saving_data(
                StartSavingCsvConfig(
                    out_dir=output_path,
                    local=datetime.now().astimezone(),
                    fps=cfg.fps,
                    print_stats=True,
                    save_performance_histograms=cfg.storage.save_performance_histograms,
                )
            )
            stats = coord.consume_stream(source, expected_framerate=cfg.fps)
            control.stop_saving_data()
    return stats


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Multi-camera 3D point tracker')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--input', type=str, required=True,
                        help='Recording directory or data2d_distorted.csv to replay')
    parser.add_argument('--output', type=str, default=None,
                        help='Output recording path (default: <storage.output_dir>/<timestamp>.braidz)')
    parser.add_argument('--calibration', type=str, default=None,
                        help='Calibration YAML (overrides calibration_path)')
    parser.add_argument('--serve', action='store_true',
                        help='Serve live tracking results over HTTP')
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logging.error(str(e))
        sys.exit(1)

    if args.calibration:
        config['calibration_path'] = args.calibration
    if args.serve:
        config.setdefault('server', {})['enabled'] = True

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    setup_logging(config['log_path'], config['log_level'])
    cfg = Config.from_dict(config)
    output_path = args.output or default_output_path(cfg.storage.output_dir)

    logging.info("Starting multi-camera tracker")

    model_server = None
    try:
        listeners = []
        if cfg.server.enabled:
            model_server = start_model_server(cfg)
            listeners.append(model_server)

        stats = run_replay(cfg, args.input, output_path, listeners)
        logging.info(f"Tracked {stats.bundles} frames, saved to {output_path}")
    except FatalPipelineError as e:
        logging.critical(f"Fatal pipeline error: invariant={e.invariant} frame={e.frame}: {e}")
        sys.exit(1)
    except (ConfigurationError, ListenerError) as e:
        logging.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    finally:
        if model_server is not None:
            model_server.stop()
        logging.info("Multi-camera tracker stopped")


if __name__ == "__main__":
    main()
