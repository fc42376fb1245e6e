"""
Camera geometry: calibrated cameras, triangulation and calibration loading.
"""

from .camera import Camera, CameraGeometryError, MultiCameraSystem, load_calibration

__all__ = ["Camera", "CameraGeometryError", "MultiCameraSystem", "load_calibration"]
