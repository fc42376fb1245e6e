"""
Tracking module.

The lifecycle engine is in tracking.lifecycle; the filter primitives, the
observation model and the birth test are its building blocks.
"""

from .kalman import ConstantVelocityModel, ekf_update, initial_covariance
from .observation_model import CameraObservationModel, generate_observation_model
from .hypothesis import BirthCandidate, HypothesisTestResult, hypothesis_test, search_birth, set_of_subsets
from .lifecycle import (
    CollectionFrameDone,
    CollectionFramePredicted,
    CollectionFrameWithObservationLikes,
    CollectionFrameUpdated,
    initialize_model_collection,
)

__all__ = [
    "ConstantVelocityModel",
    "ekf_update",
    "initial_covariance",
    "CameraObservationModel",
    "generate_observation_model",
    "BirthCandidate",
    "HypothesisTestResult",
    "hypothesis_test",
    "search_birth",
    "set_of_subsets",
    "CollectionFrameDone",
    "CollectionFramePredicted",
    "CollectionFrameWithObservationLikes",
    "CollectionFrameUpdated",
    "initialize_model_collection",
]
