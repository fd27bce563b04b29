# bank.py
"""One TagFilter per tag identity, driven once per control period."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from tag_tracking.common import Detection, StepResult, TagPose, VehicleState
from tag_tracking.config import TrackerConfig
from tag_tracking.frames import Calibration, quaternion_to_rotation, rotation_twist
from tag_tracking.measurement import DegenerateMeasurementError, detection_covariance
from tag_tracking.tracker import TagFilter

Publish = Callable[[TagPose], None]


@dataclass(frozen=True, eq=False)
class ControlInput:
    """Everything the bank needs from the vehicle for one cycle."""
    twist: np.ndarray          # 6×1, camera frame
    process_cov: np.ndarray    # 3×3
    W_R_B: np.ndarray
    W_t_B: np.ndarray          # 3×1
    has_state: bool


def unpack_symmetric(cov6) -> np.ndarray:
    """(xx, xy, yy, xz, yz, zz) → symmetric 3×3."""
    c = np.asarray(cov6, dtype=float).ravel()
    return np.array(
        [
            [c[0], c[1], c[3]],
            [c[1], c[2], c[4]],
            [c[3], c[4], c[5]],
        ]
    )


def vehicle_pose(vehicle: VehicleState) -> Tuple[np.ndarray, np.ndarray]:
    W_R_B = quaternion_to_rotation(*vehicle.attitude)
    W_t_B = np.asarray(vehicle.position, dtype=float).reshape(3, 1)
    return W_R_B, W_t_B


def compute_control(
    calib: Calibration,
    vehicle: Optional[VehicleState],
    cfg: TrackerConfig,
    last_pose: Optional[Tuple[np.ndarray, np.ndarray]] = None,
) -> ControlInput:
    """
    Camera-frame control twist and process noise for this cycle.

    Without a vehicle state the twist is zero and the noise falls back to a
    fixed diagonal floor; the world pose is the last one known, or identity.
    """
    if vehicle is None:
        if last_pose is None:
            W_R_B, W_t_B = np.eye(3), np.zeros((3, 1))
        else:
            W_R_B, W_t_B = last_pose
        return ControlInput(
            twist=np.zeros((6, 1)),
            process_cov=np.eye(3) * cfg.nostate_process_noise,
            W_R_B=W_R_B,
            W_t_B=W_t_B,
            has_state=False,
        )

    W_R_B, W_t_B = vehicle_pose(vehicle)
    B_T_W = rotation_twist(W_R_B.T)
    twist = calib.C_T_B @ B_T_W @ vehicle.twist

    # Covariances are summed, not propagated through the twist transform
    process_cov = unpack_symmetric(vehicle.vel_cov) + unpack_symmetric(vehicle.avel_cov)
    return ControlInput(
        twist=twist,
        process_cov=process_cov,
        W_R_B=W_R_B,
        W_t_B=W_t_B,
        has_state=True,
    )


class FilterBank:
    def __init__(self) -> None:
        self.filters: Dict[int, TagFilter] = {}
        self.new_detections: List[Detection] = []
        self.rejected_corrections = 0

    # ------------------------------------------------------------------ #
    #   D E T E C T I O N S
    # ------------------------------------------------------------------ #
    def add_detection(self, det: Detection) -> None:
        if det.tag_id not in self.filters:
            self.filters[det.tag_id] = TagFilter(det.tag_id)
            print(f"[Tracker] New tag {det.tag_id}")
        self.new_detections.append(det)

    def add_detections(self, dets: Iterable[Detection]) -> None:
        for det in dets:
            self.add_detection(det)

    def match(self, tag_id: int) -> Optional[Detection]:
        """First detection of ``tag_id`` this cycle, if any."""
        return next((d for d in self.new_detections if d.tag_id == tag_id), None)

    # ------------------------------------------------------------------ #
    #   S T E P
    # ------------------------------------------------------------------ #
    def _measurement_cov(
        self, flt: TagFilter, det: Detection, calib: Calibration, cfg: TrackerConfig
    ) -> Optional[np.ndarray]:
        try:
            return detection_covariance(det, calib, cfg)
        except DegenerateMeasurementError as exc:
            self.rejected_corrections += 1
            print(f"[Tracker] Tag {flt.tag_id}: measurement rejected ({exc})")
            return None

    def step(
        self,
        calib: Calibration,
        control: ControlInput,
        cfg: TrackerConfig,
        publish: Publish,
        stamp: Tuple[int, int],
    ) -> StepResult:
        """
        One control period: seed, predict, correct and publish every filter,
        then forget this cycle's detections.
        """
        sec, nsec = stamp
        for flt in self.filters.values():
            det = self.match(flt.tag_id)

            if not flt.initialized:
                if det is not None:
                    R = self._measurement_cov(flt, det, calib, cfg)
                    if R is None:
                        R = np.eye(3) * cfg.nostate_process_noise
                    flt.seed(det.t, R)
            else:
                flt.predict(control.twist, control.process_cov, cfg.predict_period_s)
                if det is not None:
                    R = self._measurement_cov(flt, det, calib, cfg)
                    if R is not None:
                        flt.correct(det.t, R)

            state = flt.position
            if state is None:
                continue
            W_p = calib.camera_to_world(state, control.W_R_B, control.W_t_B).ravel()
            publish(TagPose(flt.tag_id, (float(W_p[0]), float(W_p[1]), float(W_p[2])), sec, nsec))

        self.new_detections.clear()
        return StepResult.LOG if self.has_estimate else StepResult.IDLE

    # ------------------------------------------------------------------ #
    #   C O N T A I N E R
    # ------------------------------------------------------------------ #
    @property
    def has_estimate(self) -> bool:
        return any(f.initialized for f in self.filters.values())

    def reset(self) -> None:
        self.filters.clear()
        self.new_detections.clear()

    def get(self, tag_id: int) -> Optional[TagFilter]:
        return self.filters.get(tag_id)

    def __len__(self) -> int:
        return len(self.filters)

    def __contains__(self, tag_id: int) -> bool:
        return tag_id in self.filters

    def __iter__(self) -> Iterator[TagFilter]:
        return iter(self.filters.values())
