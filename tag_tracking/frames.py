# frames.py
"""
Rigid-body and twist transforms between the world (W), body (B) and
camera (C) frames.

Naming follows ``A_R_B`` / ``A_t_B``: rotation / translation of frame B
expressed in frame A, so that ``p_A = A_R_B @ p_B + A_t_B``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from tag_tracking.common import Extrinsics


def skew(v) -> np.ndarray:
    """3×3 matrix ``[v]x`` such that ``skew(v) @ u == cross(v, u)``."""
    x, y, z = np.asarray(v, dtype=float).ravel()
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def rotation_from_rpy(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """R = Rz(yaw) · Ry(pitch) · Rx(roll)."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array(
        [
            [cp * cy, sr * sp * cy - cr * sy, cr * sp * cy + sr * sy],
            [cp * sy, sr * sp * sy + cr * cy, cr * sp * sy - sr * cy],
            [-sp, sr * cp, cr * cp],
        ]
    )


def quaternion_to_rotation(qw: float, qx: float, qy: float, qz: float) -> np.ndarray:
    """Rotation matrix of a unit quaternion. The input is not renormalized."""
    return np.array(
        [
            [1 - 2 * qy * qy - 2 * qz * qz, 2 * qx * qy - 2 * qz * qw, 2 * qx * qz + 2 * qy * qw],
            [2 * qx * qy + 2 * qz * qw, 1 - 2 * qx * qx - 2 * qz * qz, 2 * qy * qz - 2 * qx * qw],
            [2 * qx * qz - 2 * qy * qw, 2 * qy * qz + 2 * qx * qw, 1 - 2 * qx * qx - 2 * qy * qy],
        ]
    )


def twist_transform(R: np.ndarray, t) -> np.ndarray:
    """
    6×6 matrix mapping a twist ``[v; w]`` expressed in the frame that
    ``(R, t)`` starts from into the frame ``(R, t)`` points to.

    ``R, t`` describe the mount in the opposite direction, hence the
    transposed rotation blocks::

        [ Rᵗ  [t]x ]
        [ 0    Rᵗ  ]
    """
    T = np.zeros((6, 6))
    Rt = np.asarray(R, dtype=float).T
    T[0:3, 0:3] = Rt
    T[3:6, 3:6] = Rt
    T[0:3, 3:6] = skew(t)
    return T


def rotation_twist(R: np.ndarray) -> np.ndarray:
    """Block-diagonal 6×6 ``diag(R, R)``: rotates both halves of a twist."""
    T = np.eye(6)
    T[0:3, 0:3] = R
    T[3:6, 3:6] = R
    return T


@dataclass(frozen=True, eq=False)
class Calibration:
    """
    Camera intrinsics plus the fixed body → camera mount.

    Never mutated: build a new one with :meth:`from_extrinsics` whenever the
    extrinsics change.
    """
    K: np.ndarray
    B_R_C: np.ndarray
    B_t_C: np.ndarray     # 3×1
    C_T_B: np.ndarray     # 6×6 twist transform body → camera

    @classmethod
    def from_extrinsics(cls, extrinsics: Extrinsics, K: np.ndarray) -> "Calibration":
        B_R_C = rotation_from_rpy(extrinsics.roll, extrinsics.pitch, extrinsics.yaw)
        B_t_C = np.array([[extrinsics.tx], [extrinsics.ty], [extrinsics.tz]], dtype=float)
        return cls(
            K=np.asarray(K, dtype=float).copy(),
            B_R_C=B_R_C,
            B_t_C=B_t_C,
            C_T_B=twist_transform(B_R_C, B_t_C),
        )

    @property
    def C_R_B(self) -> np.ndarray:
        return self.B_R_C.T

    def camera_to_world(self, p_C, W_R_B: np.ndarray, W_t_B) -> np.ndarray:
        """W_R_B · (B_R_C · p + B_t_C) + W_t_B, as a 3×1 column."""
        p_C = np.asarray(p_C, dtype=float).reshape(3, 1)
        W_t_B = np.asarray(W_t_B, dtype=float).reshape(3, 1)
        return W_R_B @ (self.B_R_C @ p_C + self.B_t_C) + W_t_B

    def world_to_camera(self, p_W, W_R_B: np.ndarray, W_t_B) -> np.ndarray:
        """Inverse of :meth:`camera_to_world`."""
        p_W = np.asarray(p_W, dtype=float).reshape(3, 1)
        W_t_B = np.asarray(W_t_B, dtype=float).reshape(3, 1)
        p_B = W_R_B.T @ (p_W - W_t_B)
        return self.C_R_B @ (p_B - self.B_t_C)
