# common.py
"""Objects that are shared across multiple modules."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np


class NotCalibratedError(RuntimeError):
    """Raised when a camera→world transform is requested before extrinsics."""


class StepResult(str, Enum):
    WAIT = "wait"   # paused: no extrinsics or no detection yet
    IDLE = "idle"   # running, but no filter holds an estimate
    LOG = "log"     # at least one estimate, logging step should follow


@dataclass(frozen=True)
class Extrinsics:
    """Body → camera mount: translation (m) and roll/pitch/yaw (rad)."""
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0


@dataclass(frozen=True)
class VehicleState:
    """
    A single vehicle odometry sample.
    Velocities are body-frame; covariances use the symmetric upper-triangle
    packing (xx, xy, yy, xz, yz, zz).
    """
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    attitude: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)  # qw, qx, qy, qz
    velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    angular_velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    vel_cov: Tuple[float, ...] = (0.0,) * 6
    avel_cov: Tuple[float, ...] = (0.0,) * 6

    @property
    def twist(self) -> np.ndarray:
        return np.array([*self.velocity, *self.angular_velocity], dtype=float).reshape(6, 1)


@dataclass(frozen=True)
class Detection:
    """One tag seen in one frame: camera-frame translation + Rodrigues vector."""
    tag_id: int
    translation: Tuple[float, float, float]
    rotation: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    @property
    def measurement(self) -> np.ndarray:
        """Raw 6×1 buffer: translation followed by the Rodrigues vector."""
        return np.array([*self.translation, *self.rotation], dtype=float).reshape(6, 1)

    @property
    def t(self) -> np.ndarray:
        return self.measurement[:3]


@dataclass(frozen=True)
class TagPose:
    """World-frame position of one tag, stamped with wall-clock time."""
    tag_id: int
    position: Tuple[float, float, float]
    sec: int
    nsec: int

    @property
    def key(self) -> str:
        return str(self.tag_id)
