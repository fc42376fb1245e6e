"""
New object (birth) hypothesis test.

Given one candidate detection per camera, find the subset of cameras whose
rays meet in a single 3D point with small reprojection error everywhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from geometry.camera import CameraGeometryError, MultiCameraSystem
from models.config import HypothesisTestParams

# Mean reprojection distances closer than this are considered equal.
TIE_TOLERANCE_PIXELS = 1e-6


def set_of_subsets(keys: Iterable) -> List[FrozenSet]:
    """
    All subsets of `keys` (the power set), including the empty and full set.

    Subsets are produced by bit mask over the sorted keys, so the result has
    exactly 2**len(keys) entries.
    """
    ordered = sorted(set(keys))
    n = len(ordered)
    return [
        frozenset(k for i, k in enumerate(ordered) if mask & (1 << i))
        for mask in range(1 << n)
    ]


@dataclass(frozen=True)
class CamAndDist:
    """Reprojection distance of the undistorted pixel in one camera."""
    cam_name: str
    reproj_dist: float


@dataclass(frozen=True)
class HypothesisTestResult:
    coords: np.ndarray
    cams_and_reproj_dist: Tuple[CamAndDist, ...]

    @property
    def mean_reproj_dist(self) -> float:
        return float(np.mean([c.reproj_dist for c in self.cams_and_reproj_dist]))

    @property
    def cam_names(self) -> List[str]:
        return [c.cam_name for c in self.cams_and_reproj_dist]


def hypothesis_test(
    recon: MultiCameraSystem,
    candidates: Dict[str, Tuple[float, float]],
    params: HypothesisTestParams,
) -> Optional[HypothesisTestResult]:
    """
    Find the best camera subset that explains a single new 3D point.

    A subset qualifies when it has at least `minimum_number_of_cameras`
    members, the triangulated point lies in front of every member and every
    member's reprojection distance is below
    `hypothesis_test_max_acceptable_error`. The best subset has the lowest
    mean reprojection distance; ties go to the larger subset.

    Args:
        recon: Calibration.
        candidates: One undistorted pixel per camera.
        params: Test thresholds.

    Returns:
        The best result, or None if no subset qualifies.
    """
    min_cams = max(2, params.minimum_number_of_cameras)
    if len(candidates) < min_cams:
        return None

    best: Optional[HypothesisTestResult] = None
    for subset in set_of_subsets(candidates):
        if len(subset) < min_cams:
            continue
        pixels = {name: candidates[name] for name in subset}
        try:
            coords = recon.triangulate(pixels)
            dists = tuple(
                CamAndDist(name, recon.reprojection_distance(name, coords, pixels[name]))
                for name in sorted(subset)
            )
        except CameraGeometryError as e:
            logging.debug(f"Birth hypothesis {sorted(subset)} rejected: {e}")
            continue
        if any(d.reproj_dist >= params.hypothesis_test_max_acceptable_error for d in dists):
            continue
        result = HypothesisTestResult(coords=coords, cams_and_reproj_dist=dists)
        if best is None or _is_better(result, best):
            best = result
    return best


def _is_better(a: HypothesisTestResult, b: HypothesisTestResult) -> bool:
    a_mean, b_mean = a.mean_reproj_dist, b.mean_reproj_dist
    if abs(a_mean - b_mean) > TIE_TOLERANCE_PIXELS:
        return a_mean < b_mean
    return len(a.cams_and_reproj_dist) > len(b.cams_and_reproj_dist)


@dataclass(frozen=True)
class BirthCandidate:
    """
    Best new object found among unused detections.

    Attributes:
        result: Hypothesis test result of the chosen detections.
        chosen: Index of the chosen detection in each member camera's list.
    """
    result: HypothesisTestResult
    chosen: Dict[str, int]


def search_birth(
    recon: MultiCameraSystem,
    pixels: Dict[str, Sequence[Tuple[float, float]]],
    params: HypothesisTestParams,
) -> Optional[BirthCandidate]:
    """
    Search all unused detections for the best new object.

    Every pair of detections from two different cameras seeds a 3D point.
    Each other camera contributes its detection nearest to the projection
    of that point, when closer than the acceptable error. The resulting
    candidate set is scored with `hypothesis_test`, and the best result over
    all seeds is returned.

    Args:
        recon: Calibration.
        pixels: Unused undistorted pixels per camera.
        params: Test thresholds.

    Returns:
        The best candidate, or None if no combination qualifies.
    """
    min_cams = max(2, params.minimum_number_of_cameras)
    max_err = params.hypothesis_test_max_acceptable_error
    cams = sorted(name for name, pts in pixels.items() if pts)
    if len(cams) < min_cams:
        return None

    best: Optional[BirthCandidate] = None
    tried = set()
    for i, cam_a in enumerate(cams):
        for cam_b in cams[i + 1:]:
            for ia, pa in enumerate(pixels[cam_a]):
                for ib, pb in enumerate(pixels[cam_b]):
                    try:
                        seed = recon.triangulate({cam_a: pa, cam_b: pb})
                        seed_err = max(
                            recon.reprojection_distance(cam_a, seed, pa),
                            recon.reprojection_distance(cam_b, seed, pb),
                        )
                    except CameraGeometryError:
                        continue
                    if seed_err >= max_err:
                        continue

                    chosen = {cam_a: ia, cam_b: ib}
                    for cam_c in cams:
                        if cam_c not in chosen:
                            nearest = _nearest(recon, cam_c, seed, pixels[cam_c], max_err)
                            if nearest is not None:
                                chosen[cam_c] = nearest
                    if len(chosen) < min_cams:
                        continue
                    key = frozenset(chosen.items())
                    if key in tried:
                        continue
                    tried.add(key)

                    result = hypothesis_test(
                        recon, {name: pixels[name][j] for name, j in chosen.items()}, params
                    )
                    if result is not None and (best is None or _is_better(result, best.result)):
                        best = BirthCandidate(
                            result=result,
                            chosen={name: chosen[name] for name in result.cam_names},
                        )
    return best


def _nearest(
    recon: MultiCameraSystem,
    cam_name: str,
    pt3d: np.ndarray,
    pts: Sequence[Tuple[float, float]],
    max_err: float,
) -> Optional[int]:
    best_idx: Optional[int] = None
    best_dist = max_err
    for j, px in enumerate(pts):
        try:
            dist = recon.reprojection_distance(cam_name, pt3d, px)
        except CameraGeometryError:
            return None
        if dist < best_dist:
            best_idx, best_dist = j, dist
    return best_idx
