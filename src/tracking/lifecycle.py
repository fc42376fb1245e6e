"""
Tracked object lifecycle engine.

The live object set ("model collection") is advanced once per bundle through
four transitions, each producing the next phase:

    CollectionFrameDone
        .predict_motion()                      -> CollectionFramePredicted
        .compute_observation_likes(bundle)     -> CollectionFrameWithObservationLikes
        .solve_data_association_and_update()   -> (CollectionFrameUpdated, unused)
        .births_and_deaths(unused, listeners)  -> CollectionFrameDone

A phase can be consumed only once; calling a transition twice raises
RuntimeError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment

from geometry.camera import CameraGeometryError, MultiCameraSystem
from models.bundle import UndistortedBundle
from models.config import TrackingParams
from models.detection import TimeDataPassthrough, UndistortedPoint
from models.errors import ListenerError
from models.events import Birth, Death, EndOfFrame, SendType, Update
from models.messages import KalmanEstimate
from models.rows import DataAssocRow
from models.track import KalmanEstimateRecord, LifecycleTag, LiveObject, mean_reproj_dist_100x

from .hypothesis import search_birth
from .kalman import ConstantVelocityModel, ekf_update, initial_covariance
from .observation_model import CameraObservationModel, generate_observation_model

# Cost used in place of infinity for the assignment solver.
_UNASSIGNABLE = 1e12


@dataclass
class ModelCollectionInner:
    """State shared by every phase: parameters, calibration and outputs."""
    tracking_params: TrackingParams
    recon: MultiCameraSystem
    motion_model: ConstantVelocityModel
    save: Callable[[Any], None]
    next_obj_id: int = 0

    def new_obj_id(self) -> int:
        obj_id = self.next_obj_id
        self.next_obj_id += 1
        return obj_id


@dataclass
class _Match:
    cam_name: str
    cam_num: int
    point: UndistortedPoint
    reproj_dist: float
    model: CameraObservationModel


@dataclass
class _CameraLikes:
    """Observation models and gated distances of every object in one camera."""
    points: List[UndistortedPoint]
    models: Dict[int, CameraObservationModel] = field(default_factory=dict)
    costs: Optional[np.ndarray] = None


class _Phase:
    def __init__(self, mcinner: ModelCollectionInner, objects: List[LiveObject]):
        self.mcinner = mcinner
        self._objects = objects
        self._consumed = False

    @property
    def objects(self) -> List[LiveObject]:
        return list(self._objects)

    def _take(self) -> List[LiveObject]:
        if self._consumed:
            raise RuntimeError(f"{type(self).__name__} was already advanced")
        self._consumed = True
        return self._objects


class CollectionFrameDone(_Phase):
    """Live objects after all processing of a frame."""

    def predict_motion(self) -> "CollectionFramePredicted":
        """Advance every live object by one frame with the motion model."""
        objects = self._take()
        model = self.mcinner.motion_model
        for obj in objects:
            obj.state, obj.covariance = model.predict(obj.state, obj.covariance)
            if obj.tag == LifecycleTag.PROVISIONAL:
                obj.tag = LifecycleTag.ALIVE
        return CollectionFramePredicted(self.mcinner, objects)


class CollectionFramePredicted(_Phase):
    """Live objects holding priors for the current frame."""

    def compute_observation_likes(self, bundle: UndistortedBundle) -> "CollectionFrameWithObservationLikes":
        """
        Score every (object, camera, detection) triple by reprojection distance.

        Distances above the gating threshold are infinite. A camera whose
        projection cannot be linearized for an object is excluded for that
        object on this frame.
        """
        objects = self._take()
        params = self.mcinner.tracking_params
        gate = params.accept_observation_max_distance_pixels
        recon = self.mcinner.recon

        likes: Dict[str, _CameraLikes] = {}
        for cam_name, points in bundle.items():
            cam = recon.cam_by_name(cam_name)
            if cam is None or not points:
                continue
            cam_likes = _CameraLikes(points=list(points))
            costs = np.full((len(objects), len(points)), np.inf)
            for i, obj in enumerate(objects):
                try:
                    model = generate_observation_model(cam, obj.state, params.ekf_observation_covariance_pixels)
                    predicted = model.predict_observation(obj.state)
                except CameraGeometryError as e:
                    logging.warning(
                        f"Frame {bundle.frame()}: excluding camera {cam_name} for object {obj.obj_id}: {e}"
                    )
                    continue
                cam_likes.models[i] = model
                for j, pt in enumerate(points):
                    if not pt.is_finite:
                        continue
                    dist = float(np.hypot(pt.x - predicted[0], pt.y - predicted[1]))
                    if dist <= gate:
                        costs[i, j] = dist
            cam_likes.costs = costs
            likes[cam_name] = cam_likes
        return CollectionFrameWithObservationLikes(self.mcinner, objects, bundle, likes)


class CollectionFrameWithObservationLikes(_Phase):
    """Live objects with gated observation costs for the current frame."""

    def __init__(
        self,
        mcinner: ModelCollectionInner,
        objects: List[LiveObject],
        bundle: UndistortedBundle,
        likes: Dict[str, _CameraLikes],
    ):
        super().__init__(mcinner, objects)
        self.bundle = bundle
        self.likes = likes

    def solve_data_association_and_update(self) -> Tuple["CollectionFrameUpdated", UndistortedBundle]:
        """
        Assign detections to objects and apply the Kalman correction.

        Assignment is solved per camera with minimum total reprojection
        distance, so every object receives at most one detection per camera
        and every detection goes to at most one object.

        Returns:
            The updated collection and the bundle of detections left unused.
        """
        objects = self._take()
        tdpt = self.bundle.tdpt
        matches: Dict[int, List[_Match]] = {}
        unused: Dict[str, List[UndistortedPoint]] = {}

        for cam_name, points in self.bundle.items():
            cam_likes = self.likes.get(cam_name)
            used = set()
            if cam_likes is not None and objects:
                for i, j in _assign(cam_likes.costs):
                    matches.setdefault(i, []).append(_Match(
                        cam_name=cam_name,
                        cam_num=self.bundle.cam_num(cam_name),
                        point=points[j],
                        reproj_dist=float(cam_likes.costs[i, j]),
                        model=cam_likes.models[i],
                    ))
                    used.add(j)
            unused[cam_name] = [pt for j, pt in enumerate(points) if j not in used]

        updates: List[SendType] = []
        for i, obj in enumerate(objects):
            obj_matches = matches.get(i)
            if obj_matches:
                self._update_object(obj, obj_matches, tdpt)
                obj.frames_unassigned = 0
            else:
                obj.frames_unassigned += 1
            updates.append(Update(obj.to_row(tdpt.frame, tdpt.timestamp)))

        unused_bundle = UndistortedBundle(tdpt=tdpt, points=unused, cam_nums=dict(self.bundle.cam_nums))
        return CollectionFrameUpdated(self.mcinner, objects, tdpt, updates), unused_bundle

    def _update_object(self, obj: LiveObject, obj_matches: List[_Match], tdpt: TimeDataPassthrough) -> None:
        state, covariance = obj.state, obj.covariance
        assoc: List[DataAssocRow] = []
        dists: List[float] = []
        for m in obj_matches:
            H, HT, R = m.model.linearization()
            try:
                predicted = m.model.predict_observation(state)
                state, covariance = ekf_update(
                    state, covariance, np.array([m.point.x, m.point.y]), predicted, H, HT, R
                )
            except (CameraGeometryError, np.linalg.LinAlgError) as e:
                logging.warning(
                    f"Frame {tdpt.frame}: skipping update of object {obj.obj_id} "
                    f"from camera {m.cam_name}: {e}"
                )
                continue
            assoc.append(DataAssocRow(obj_id=obj.obj_id, frame=tdpt.frame, cam_num=m.cam_num, pt_idx=m.point.idx))
            dists.append(m.reproj_dist)
        obj.state, obj.covariance = state, covariance
        if assoc:
            self.mcinner.save(KalmanEstimate(KalmanEstimateRecord(
                record=obj.to_row(tdpt.frame, tdpt.timestamp),
                data_assoc_rows=assoc,
                mean_reproj_dist_100x=mean_reproj_dist_100x(dists),
            )))


def _assign(costs: np.ndarray) -> List[Tuple[int, int]]:
    """Minimum cost assignment over finite entries of a cost matrix."""
    finite = np.isfinite(costs)
    if costs.size == 0 or not finite.any():
        return []
    solver_costs = np.where(finite, costs, _UNASSIGNABLE)
    rows, cols = linear_sum_assignment(solver_costs)
    return [(int(i), int(j)) for i, j in zip(rows, cols) if finite[i, j]]


class CollectionFrameUpdated(_Phase):
    """Live objects after the Kalman correction of the current frame."""

    def __init__(
        self,
        mcinner: ModelCollectionInner,
        objects: List[LiveObject],
        tdpt: TimeDataPassthrough,
        updates: List[SendType],
    ):
        super().__init__(mcinner, objects)
        self.tdpt = tdpt
        self.updates = updates

    def births_and_deaths(self, unused: UndistortedBundle, listeners: Sequence[Any] = ()) -> CollectionFrameDone:
        """
        Create objects from unused detections, drop stale objects and
        broadcast the frame's events to every listener in turn.

        Raises:
            ListenerError: If sending to a listener fails.
        """
        objects = self._take()
        events: List[SendType] = list(self.updates)

        for obj in self._births(unused):
            objects.append(obj)
            events.append(Birth(obj.to_row(self.tdpt.frame, self.tdpt.timestamp)))

        max_unassigned = self.mcinner.tracking_params.max_frames_unassigned
        survivors: List[LiveObject] = []
        for obj in objects:
            if obj.frames_unassigned > max_unassigned:
                obj.tag = LifecycleTag.DEAD
                logging.debug(f"Frame {self.tdpt.frame}: object {obj.obj_id} died")
                events.append(Death(obj.obj_id))
            else:
                survivors.append(obj)

        events.append(EndOfFrame(self.tdpt.frame))
        broadcast(listeners, events, self.tdpt)
        return CollectionFrameDone(self.mcinner, survivors)

    def _births(self, unused: UndistortedBundle) -> List[LiveObject]:
        mcinner = self.mcinner
        params = mcinner.tracking_params
        remaining: Dict[str, List[UndistortedPoint]] = {
            cam_name: sorted((p for p in pts if p.is_finite), key=lambda p: p.idx)
            for cam_name, pts in unused.items()
        }
        born: List[LiveObject] = []
        while True:
            found = search_birth(
                mcinner.recon,
                {name: [(pt.x, pt.y) for pt in pts] for name, pts in remaining.items()},
                params.hypothesis_test_params,
            )
            if found is None:
                break
            result = found.result

            obj = LiveObject(
                obj_id=mcinner.new_obj_id(),
                state=np.concatenate([np.asarray(result.coords, dtype=np.float64), np.zeros(3)]),
                covariance=initial_covariance(
                    params.initial_position_std_meters,
                    params.initial_vel_std_meters_per_sec,
                ),
                tag=LifecycleTag.PROVISIONAL,
                start_frame=self.tdpt.frame,
            )
            assoc = []
            for cd in result.cams_and_reproj_dist:
                pt = remaining[cd.cam_name].pop(found.chosen[cd.cam_name])
                assoc.append(DataAssocRow(
                    obj_id=obj.obj_id,
                    frame=self.tdpt.frame,
                    cam_num=unused.cam_num(cd.cam_name),
                    pt_idx=pt.idx,
                ))
            logging.debug(
                f"Frame {self.tdpt.frame}: birth of object {obj.obj_id} from cameras {result.cam_names}"
            )
            mcinner.save(KalmanEstimate(KalmanEstimateRecord(
                record=obj.to_row(self.tdpt.frame, self.tdpt.timestamp),
                data_assoc_rows=assoc,
                mean_reproj_dist_100x=mean_reproj_dist_100x([cd.reproj_dist for cd in result.cams_and_reproj_dist]),
            )))
            born.append(obj)
        return born


def broadcast(listeners: Sequence[Any], events: List[SendType], tdpt: TimeDataPassthrough) -> None:
    """
    Send events to each listener in turn, blocking on each send.

    Raises:
        ListenerError: If a listener rejects an event.
    """
    for listener in listeners:
        for event in events:
            try:
                listener.put((event, tdpt))
            except Exception as e:
                raise ListenerError(f"sending {type(event).__name__} for frame {tdpt.frame} failed: {e}") from e


def initialize_model_collection(
    tracking_params: TrackingParams,
    recon: MultiCameraSystem,
    fps: float,
    save: Callable[[Any], None],
) -> CollectionFrameDone:
    """Create an empty model collection for a calibration and frame rate."""
    mcinner = ModelCollectionInner(
        tracking_params=tracking_params,
        recon=recon,
        motion_model=ConstantVelocityModel(1.0 / fps, tracking_params.motion_noise_scale),
        save=save,
    )
    return CollectionFrameDone(mcinner, [])
