"""
Calibrated camera models.

A camera maps world points (meters) to pixels through a pinhole model with
optional lens distortion. Projection and undistortion with distortion use
OpenCV; the undistorted pinhole model is evaluated directly with numpy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import yaml

from models.errors import ConfigurationError


class CameraGeometryError(ValueError):
    """Raised when a projection is undefined (point behind camera, degenerate rays)."""


# Points closer than this to the camera plane are not projected.
MIN_DEPTH = 1e-9


@dataclass
class Camera:
    """
    A single calibrated camera.

    Attributes:
        name: Camera name, unique within a calibration.
        K: 3x3 intrinsic matrix.
        distortion: OpenCV distortion coefficients (k1, k2, p1, p2[, k3]).
        R: 3x3 rotation from world to camera frame.
        t: Translation from world to camera frame (X_cam = R @ X + t).
        width: Image width in pixels.
        height: Image height in pixels.
    """
    name: str
    K: np.ndarray
    R: np.ndarray
    t: np.ndarray
    distortion: np.ndarray = field(default_factory=lambda: np.zeros(5))
    width: int = 640
    height: int = 480

    def __post_init__(self):
        self.K = np.asarray(self.K, dtype=np.float64).reshape(3, 3)
        self.R = np.asarray(self.R, dtype=np.float64).reshape(3, 3)
        self.t = np.asarray(self.t, dtype=np.float64).reshape(3)
        self.distortion = np.asarray(self.distortion, dtype=np.float64).ravel()
        self._rvec, _ = cv2.Rodrigues(self.R)

    @classmethod
    def look_at(
        cls,
        name: str,
        eye: Sequence[float],
        target: Sequence[float],
        focal_length: float = 800.0,
        width: int = 640,
        height: int = 480,
        up: Sequence[float] = (0.0, 0.0, 1.0),
        distortion: Optional[Sequence[float]] = None,
    ) -> "Camera":
        """Create a camera at `eye` looking towards `target` with `up` as world up."""
        eye = np.asarray(eye, dtype=np.float64)
        forward = np.asarray(target, dtype=np.float64) - eye
        forward /= np.linalg.norm(forward)
        right = np.cross(forward, np.asarray(up, dtype=np.float64))
        norm = np.linalg.norm(right)
        if norm < 1e-12:
            raise CameraGeometryError("viewing direction is parallel to up vector")
        right /= norm
        down = np.cross(forward, right)
        R = np.vstack([right, down, forward])
        K = np.array([
            [focal_length, 0.0, width / 2.0],
            [0.0, focal_length, height / 2.0],
            [0.0, 0.0, 1.0],
        ])
        return cls(
            name=name,
            K=K,
            R=R,
            t=-R @ eye,
            distortion=np.zeros(5) if distortion is None else np.asarray(distortion),
            width=width,
            height=height,
        )

    @property
    def has_distortion(self) -> bool:
        return bool(np.any(self.distortion != 0.0))

    @property
    def projection_matrix(self) -> np.ndarray:
        """3x4 matrix P = K [R | t] of the undistorted pinhole model."""
        return self.K @ np.hstack([self.R, self.t.reshape(3, 1)])

    @property
    def center(self) -> np.ndarray:
        """Camera center in world coordinates."""
        return -self.R.T @ self.t

    def depth_of(self, pt: Sequence[float]) -> float:
        """Distance of a world point along the optical axis."""
        return float((self.R @ np.asarray(pt, dtype=np.float64) + self.t)[2])

    def project_3d_to_pixel(self, pt: Sequence[float]) -> np.ndarray:
        """
        Project a world point to undistorted pixel coordinates.

        Raises:
            CameraGeometryError: If the point is on or behind the camera plane.
        """
        cam = self.R @ np.asarray(pt, dtype=np.float64) + self.t
        if cam[2] <= MIN_DEPTH:
            raise CameraGeometryError(f"point {list(pt)} is behind camera {self.name}")
        uvw = self.K @ cam
        return uvw[:2] / uvw[2]

    def project_3d_to_distorted_pixel(self, pt: Sequence[float]) -> np.ndarray:
        """Project a world point to distorted (raw image) pixel coordinates."""
        if self.depth_of(pt) <= MIN_DEPTH:
            raise CameraGeometryError(f"point {list(pt)} is behind camera {self.name}")
        obj = np.asarray(pt, dtype=np.float64).reshape(1, 3)
        img, _ = cv2.projectPoints(obj, self._rvec, self.t.reshape(3, 1), self.K, self.distortion)
        return img.reshape(2)

    def undistort_pixel(self, x: float, y: float) -> Tuple[float, float]:
        """Map a distorted pixel to its undistorted location."""
        if not self.has_distortion or not (np.isfinite(x) and np.isfinite(y)):
            return float(x), float(y)
        src = np.array([[[x, y]]], dtype=np.float64)
        dst = cv2.undistortPoints(src, self.K, self.distortion, P=self.K)
        return float(dst[0, 0, 0]), float(dst[0, 0, 1])

    def linearize_numerically_at(self, pt: Sequence[float], delta: float) -> np.ndarray:
        """
        Jacobian of the undistorted projection at a world point.

        Uses central differences with step `delta` along each world axis.

        Returns:
            2x3 matrix d(pixel)/d(position).

        Raises:
            CameraGeometryError: If any evaluation point is behind the camera or
                the result is not finite.
        """
        center = np.asarray(pt, dtype=np.float64)
        jac = np.zeros((2, 3))
        for i in range(3):
            step = np.zeros(3)
            step[i] = delta
            plus = self.project_3d_to_pixel(center + step)
            minus = self.project_3d_to_pixel(center - step)
            jac[:, i] = (plus - minus) / (2.0 * delta)
        if not np.all(np.isfinite(jac)):
            raise CameraGeometryError(f"non-finite linearization for camera {self.name}")
        return jac

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "K": self.K.tolist(),
            "distortion": self.distortion.tolist(),
            "R": self.R.tolist(),
            "t": self.t.tolist(),
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Camera":
        return cls(
            name=d["name"],
            K=np.array(d["K"], dtype=np.float64),
            R=np.array(d["R"], dtype=np.float64),
            t=np.array(d["t"], dtype=np.float64),
            distortion=np.array(d.get("distortion", [0.0] * 5), dtype=np.float64),
            width=d.get("width", 640),
            height=d.get("height", 480),
        )


class MultiCameraSystem:
    """
    A set of calibrated cameras sharing one world frame.

    Provides DLT triangulation and reprojection error used by the birth test.
    """

    def __init__(self, cameras: Iterable[Camera]):
        self._cameras: Dict[str, Camera] = {}
        for cam in cameras:
            if cam.name in self._cameras:
                raise ValueError(f"duplicate camera name: {cam.name}")
            self._cameras[cam.name] = cam

    def __len__(self) -> int:
        return len(self._cameras)

    def __contains__(self, name: str) -> bool:
        return name in self._cameras

    @property
    def cam_names(self) -> List[str]:
        return sorted(self._cameras)

    def cam_by_name(self, name: str) -> Optional[Camera]:
        return self._cameras.get(name)

    def cameras(self) -> List[Camera]:
        return [self._cameras[n] for n in self.cam_names]

    def triangulate(self, points: Dict[str, Tuple[float, float]]) -> np.ndarray:
        """
        Find the world point whose projections best match undistorted pixels.

        Args:
            points: Undistorted pixel coordinates keyed by camera name.

        Returns:
            3D point as a length-3 array.

        Raises:
            CameraGeometryError: Fewer than two cameras, unknown camera, or
                degenerate geometry.
        """
        if len(points) < 2:
            raise CameraGeometryError("triangulation requires at least two cameras")
        rows = []
        for name, (u, v) in sorted(points.items()):
            cam = self._cameras.get(name)
            if cam is None:
                raise CameraGeometryError(f"unknown camera: {name}")
            P = cam.projection_matrix
            rows.append(u * P[2] - P[0])
            rows.append(v * P[2] - P[1])
        A = np.asarray(rows)
        _, _, vh = np.linalg.svd(A)
        X = vh[-1]
        if abs(X[3]) < 1e-12:
            raise CameraGeometryError("triangulated point at infinity")
        return X[:3] / X[3]

    def reprojection_distance(self, name: str, pt3d: Sequence[float], pixel: Tuple[float, float]) -> float:
        """Pixel distance between an undistorted observation and a projected point."""
        projected = self._cameras[name].project_3d_to_pixel(pt3d)
        return float(np.hypot(projected[0] - pixel[0], projected[1] - pixel[1]))

    def to_dict(self) -> Dict[str, Any]:
        return {"cameras": [cam.to_dict() for cam in self.cameras()]}

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MultiCameraSystem":
        return cls(Camera.from_dict(c) for c in d.get("cameras", []))


def load_calibration(path: str) -> MultiCameraSystem:
    """
    Load a multi-camera calibration from a YAML file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or holds no
            valid cameras.
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        recon = MultiCameraSystem.from_dict(data)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load calibration: {e}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid calibration {path}: {e!r}") from e
    if len(recon) == 0:
        raise ConfigurationError(f"calibration {path} contains no cameras")
    logging.info(f"Loaded calibration with {len(recon)} cameras from {path}")
    return recon
