"""
Per-camera observation model for the extended Kalman filter.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from geometry.camera import Camera

# Step (meters) of the numerical differentiation of the projection.
LINEARIZATION_DELTA = 0.001


class CameraObservationModel:
    """
    Linearized projection of the 6D state into one camera.

    The 2x6 observation matrix maps state to predicted pixel: position
    columns hold the projection Jacobian, velocity columns are zero.
    Observation noise is isotropic with variance
    `ekf_observation_covariance_pixels`.
    """

    def __init__(self, cam: Camera, jacobian: np.ndarray, ekf_observation_covariance_pixels: float):
        self.cam = cam
        H = np.zeros((2, 6))
        H[:, :3] = jacobian
        self.observation_matrix = H
        self.observation_matrix_transpose = H.T.copy()
        r = float(ekf_observation_covariance_pixels)
        self.observation_noise_covariance = np.array([[r, 0.0], [0.0, r]])

    def predict_observation(self, state: np.ndarray) -> np.ndarray:
        """Undistorted pixel at which the state's position should be observed."""
        return self.cam.project_3d_to_pixel(state[:3])

    def linearization(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (H, H transpose, R)."""
        return (
            self.observation_matrix,
            self.observation_matrix_transpose,
            self.observation_noise_covariance,
        )


def generate_observation_model(
    cam: Camera,
    state: np.ndarray,
    ekf_observation_covariance_pixels: float,
) -> CameraObservationModel:
    """
    Linearize the camera's projection at the state's position.

    Raises:
        CameraGeometryError: If the projection cannot be linearized there.
    """
    jacobian = cam.linearize_numerically_at(state[:3], LINEARIZATION_DELTA)
    return CameraObservationModel(cam, jacobian, ekf_observation_covariance_pixels)
