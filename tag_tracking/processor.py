# processor.py
"""Glue logic that wires extrinsics + odometry + detections → filter bank → poses/log."""
from __future__ import annotations

import time
from typing import Callable, Iterable, Optional, Tuple

import numpy as np

from tag_tracking.bank import FilterBank, Publish, compute_control
from tag_tracking.common import Detection, Extrinsics, NotCalibratedError, StepResult, VehicleState
from tag_tracking.config import CameraConfig, LogConfig, TrackerConfig
from tag_tracking.frames import Calibration
from tag_tracking.pose_log import AsyncPoseLog
from tag_tracking.publisher import PoseBoard


class TagTrackingProcessor:
    """
    The per-period step. Holds the only mutable state of the tracker: the
    calibration value, the filter bank and the log writer.
    """

    def __init__(
        self,
        camera_cfg: CameraConfig,
        tracker_cfg: TrackerConfig,
        log_cfg: Optional[LogConfig] = None,
        publish: Optional[Publish] = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        # Save configs
        self.camera_cfg = camera_cfg
        self.tracker_cfg = tracker_cfg
        self.log_cfg = log_cfg or LogConfig()

        # Build sub-systems
        self.bank = FilterBank()
        self.publish: Publish = publish if publish is not None else PoseBoard()
        self.log = AsyncPoseLog()
        self.clock = clock

        self.extrinsics: Optional[Extrinsics] = None
        self.calib: Optional[Calibration] = None
        self.running = False
        self.cycles = 0
        self._last_pose: Optional[Tuple[np.ndarray, np.ndarray]] = None

        if self.log_cfg.path:
            self.start_log(self.log_cfg.path, self.log_cfg.decimation)

    # ---------------------------------------------------------------------
    #                         Inputs
    # ---------------------------------------------------------------------
    def set_extrinsics(self, extrinsics: Extrinsics) -> None:
        """Store new extrinsics and rebuild the calibration from scratch."""
        self.extrinsics = extrinsics
        self.calib = Calibration.from_extrinsics(extrinsics, self.camera_cfg.K)
        print(
            f"[Processor] Extrinsics t=({extrinsics.tx:.3f},{extrinsics.ty:.3f},{extrinsics.tz:.3f}) "
            f"rpy=({extrinsics.roll:.3f},{extrinsics.pitch:.3f},{extrinsics.yaw:.3f})"
        )

    def add_detections(self, dets: Iterable[Detection]) -> None:
        self.bank.add_detections(dets)

    def apply_tuning(
        self,
        *,
        marker_length_m: float | None = None,
        pixel_noise_std: float | None = None,
        log_decimation: int | None = None,
        extrinsics: Extrinsics | None = None,
    ) -> None:
        """Update parameters while running; only touches what was given."""
        if marker_length_m is not None and marker_length_m > 0:
            self.tracker_cfg.marker_length_m = float(marker_length_m)
        if pixel_noise_std is not None and pixel_noise_std > 0:
            self.tracker_cfg.pixel_noise_std = float(pixel_noise_std)
        if log_decimation is not None and int(log_decimation) >= 1:
            self.log_cfg.decimation = int(log_decimation)
            self.log.decimation = int(log_decimation)
        if extrinsics is not None and extrinsics != self.extrinsics:
            self.set_extrinsics(extrinsics)

    # ---------------------------------------------------------------------
    #                         Logging
    # ---------------------------------------------------------------------
    def start_log(self, path: str, decimation: int = 1) -> bool:
        self.log_cfg.path = path
        self.log_cfg.decimation = decimation
        return self.log.open(path, decimation)

    def stop_log(self) -> None:
        self.log.close()

    # ---------------------------------------------------------------------
    #                         Step
    # ---------------------------------------------------------------------
    def _stamp(self) -> Tuple[int, int]:
        sec, nsec = divmod(int(self.clock()), 1_000_000_000)
        return sec, nsec

    def _wait(self) -> bool:
        """True once extrinsics are known and a first detection arrived."""
        if self.extrinsics is None or not self.bank.new_detections:
            self.bank.new_detections.clear()
            return False
        # Re-derive from the stored extrinsics, as after a reset
        self.calib = Calibration.from_extrinsics(self.extrinsics, self.camera_cfg.K)
        self.running = True
        print("[Processor] Tracking started")
        return True

    def step(self, vehicle: Optional[VehicleState] = None) -> StepResult:
        """Run one control period. Never blocks."""
        if not self.running and not self._wait():
            return StepResult.WAIT
        if self.calib is None:
            raise NotCalibratedError("tracking step without calibration")

        control = compute_control(self.calib, vehicle, self.tracker_cfg, self._last_pose)
        if control.has_state:
            self._last_pose = (control.W_R_B, control.W_t_B)

        stamp = self._stamp()
        result = self.bank.step(self.calib, control, self.tracker_cfg, self.publish, stamp)
        self.cycles += 1

        if result is StepResult.LOG:
            self.log.record(self.bank, stamp)
        return result

    def reset(self) -> None:
        """Drop every filter and go back to waiting for a first detection."""
        self.bank.reset()
        self.running = False
        self.calib = None
        print("[Processor] Reset – waiting for detections")

    def close(self) -> None:
        self.stop_log()
        print(f"[Processor] Exited. Total cycles: {self.cycles}, tags: {len(self.bank)}")
