"""
Exception types shared across the pipeline.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for tracking pipeline errors."""


class FatalPipelineError(PipelineError):
    """
    An invariant of the pipeline was violated and tracking cannot continue.

    Attributes:
        invariant: Short name of the violated invariant.
        frame: Offending frame number, if any.
    """

    def __init__(self, invariant: str, message: str, frame: Optional[int] = None):
        self.invariant = invariant
        self.frame = frame
        detail = f"[{invariant}] {message}"
        if frame is not None:
            detail += f" (frame {frame})"
        super().__init__(detail)


class ConfigurationError(PipelineError):
    """Invalid configuration detected when starting processing or recording."""


class ListenerError(PipelineError):
    """Sending to a live listener failed."""
