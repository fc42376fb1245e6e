"""
Constant velocity Kalman filter primitives for the 6D state
[x, y, z, xvel, yvel, zvel].
"""

from __future__ import annotations

from typing import Tuple

import numpy as np


class ConstantVelocityModel:
    """
    Constant velocity motion model with white-noise acceleration.

    Args:
        dt: Time step in seconds (1 / fps).
        motion_noise_scale: Acceleration noise power.
    """

    def __init__(self, dt: float, motion_noise_scale: float):
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.dt = dt
        self.motion_noise_scale = motion_noise_scale

        F = np.eye(6)
        F[0, 3] = F[1, 4] = F[2, 5] = dt
        self.F = F
        self.FT = F.T

        dt2 = dt * dt
        q = float(motion_noise_scale)
        q_pos = 0.25 * dt2 * dt2 * q
        q_pv = 0.5 * dt2 * dt * q
        q_vel = dt2 * q
        Q = np.zeros((6, 6))
        for i in range(3):
            Q[i, i] = q_pos
            Q[i, i + 3] = Q[i + 3, i] = q_pv
            Q[i + 3, i + 3] = q_vel
        self.Q = Q

    def predict(self, state: np.ndarray, covariance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Advance a state and covariance by one time step."""
        return self.F @ state, self.F @ covariance @ self.FT + self.Q


def initial_covariance(position_std: float, velocity_std: float) -> np.ndarray:
    """Diagonal covariance for a newly born object."""
    return np.diag([position_std ** 2] * 3 + [velocity_std ** 2] * 3)


def ekf_update(
    state: np.ndarray,
    covariance: np.ndarray,
    observation: np.ndarray,
    predicted_observation: np.ndarray,
    H: np.ndarray,
    HT: np.ndarray,
    R: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Extended Kalman correction with one 2D observation.

    Uses the Joseph form so the covariance stays symmetric positive definite.

    Raises:
        np.linalg.LinAlgError: If the innovation covariance is singular.
    """
    S = H @ covariance @ HT + R
    K = covariance @ HT @ np.linalg.inv(S)
    innovation = np.asarray(observation, dtype=np.float64) - predicted_observation
    new_state = state + K @ innovation
    I_KH = np.eye(state.shape[0]) - K @ H
    new_covariance = I_KH @ covariance @ I_KH.T + K @ R @ K.T
    return new_state, 0.5 * (new_covariance + new_covariance.T)
