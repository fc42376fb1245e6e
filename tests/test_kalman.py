"""
Tests for the constant velocity Kalman filter and the camera observation model.
"""

import numpy as np
import pytest

from tracking.kalman import ConstantVelocityModel, ekf_update, initial_covariance
from tracking.observation_model import generate_observation_model


class TestConstantVelocityModel:
    def test_predict_moves_by_velocity(self):
        """Position advances by velocity times dt."""
        model = ConstantVelocityModel(dt=0.01, motion_noise_scale=0.1)
        state = np.array([1.0, 2.0, 3.0, 1.0, -2.0, 0.5])

        new_state, _ = model.predict(state, np.eye(6))

        assert np.allclose(new_state[:3], [1.01, 1.98, 3.005])
        assert np.allclose(new_state[3:], state[3:])

    def test_predict_grows_uncertainty(self):
        """Prediction never shrinks the covariance diagonal."""
        model = ConstantVelocityModel(dt=0.01, motion_noise_scale=0.1)
        P = initial_covariance(0.1, 1.0)

        _, new_P = model.predict(np.zeros(6), P)

        assert np.all(np.diag(new_P) >= np.diag(P))
        assert np.allclose(new_P, new_P.T)

    def test_process_noise_structure(self):
        """White-noise acceleration couples each position with its velocity."""
        model = ConstantVelocityModel(dt=0.1, motion_noise_scale=2.0)
        Q = model.Q

        assert Q[0, 0] == pytest.approx(0.25 * 0.1 ** 4 * 2.0)
        assert Q[0, 3] == pytest.approx(0.5 * 0.1 ** 3 * 2.0)
        assert Q[3, 3] == pytest.approx(0.1 ** 2 * 2.0)
        assert Q[0, 1] == 0.0

    def test_invalid_dt(self):
        with pytest.raises(ValueError):
            ConstantVelocityModel(dt=0.0, motion_noise_scale=0.1)


class TestEkfUpdate:
    def test_update_moves_towards_observation(self, rig):
        """A correction pulls the estimate towards the observed pixel."""
        cam = rig.cam_by_name("cam1")
        true_pt = np.array([0.0, 0.05, 0.5])
        state = np.array([0.0, 0.0, 0.5, 0.0, 0.0, 0.0])
        P = initial_covariance(0.1, 1.0)

        model = generate_observation_model(cam, state, 1.0)
        H, HT, R = model.linearization()
        observed = cam.project_3d_to_pixel(true_pt)
        predicted = model.predict_observation(state)

        new_state, new_P = ekf_update(state, P, observed, predicted, H, HT, R)

        before = np.linalg.norm(predicted - observed)
        after = np.linalg.norm(cam.project_3d_to_pixel(new_state[:3]) - observed)
        assert after < before
        assert np.trace(new_P) < np.trace(P)
        assert np.allclose(new_P, new_P.T)

    def test_observation_model_shapes(self, rig):
        """H is 2x6 with zero velocity columns and R is isotropic."""
        model = generate_observation_model(rig.cam_by_name("cam2"), np.array([0.0, 0.0, 0.5, 0, 0, 0]), 2.0)
        H, HT, R = model.linearization()

        assert H.shape == (2, 6)
        assert HT.shape == (6, 2)
        assert np.all(H[:, 3:] == 0.0)
        assert np.allclose(R, 2.0 * np.eye(2))
