"""
Logging setup.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(log_path: Optional[str], log_level: str) -> None:
    """
    Configure the root logger to log to stderr and, if given, to a file.

    Args:
        log_path: Log file path. Parent directories are created. None logs
            to stderr only.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    """
    level = log_level.upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"unknown log level: {log_level}")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
