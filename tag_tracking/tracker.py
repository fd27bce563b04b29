# tracker.py
"""3-state, 6-input EKF tracking one tag's camera-frame position."""
from __future__ import annotations

from typing import Optional

import numpy as np
from filterpy.kalman import KalmanFilter


def control_matrix(state, dt: float) -> np.ndarray:
    """
    3×6 control matrix linearized at ``state``.

    A static tag seen from a camera moving with twist ``[v; w]`` drifts as
    ``p' = -v - w × p``, so::

        [ -dt    0    0     0  -dt*z  dt*y ]
        [   0  -dt    0  dt*z      0 -dt*x ]
        [   0    0  -dt -dt*y   dt*x     0 ]
    """
    x, y, z = np.asarray(state, dtype=float).ravel()
    return np.array(
        [
            [-dt, 0.0, 0.0, 0.0, -dt * z, dt * y],
            [0.0, -dt, 0.0, dt * z, 0.0, -dt * x],
            [0.0, 0.0, -dt, -dt * y, dt * x, 0.0],
        ]
    )


def propagate_state(state, control, dt: float) -> np.ndarray:
    """state + B(state, dt) · control, as a 3×1 column."""
    state = np.asarray(state, dtype=float).reshape(3, 1)
    control = np.asarray(control, dtype=float).reshape(6, 1)
    return state + control_matrix(state, dt) @ control


class TagFilter:
    # ------------------------------------------------------------------ #
    #   I N I T
    # ------------------------------------------------------------------ #
    def __init__(self, tag_id: int):
        self.tag_id = tag_id

        # Build filter: pure integration, motion enters through B·u
        self.kf = KalmanFilter(dim_x=3, dim_z=3, dim_u=6)
        self.kf.F = np.eye(3)
        self.kf.H = np.eye(3)
        self.kf.B = np.zeros((3, 6))
        self.kf.x = np.zeros((3, 1))
        self.kf.P = np.zeros((3, 3))

        # Runtime bookkeeping
        self.initialized = False
        self.age_cycles = 0
        self.coasting_cycles = 0

    # ------------------------------------------------------------------ #
    #   S E E D
    # ------------------------------------------------------------------ #
    def seed(self, translation, covariance: np.ndarray) -> None:
        """First detection: take the raw translation as-is."""
        self.kf.x = np.asarray(translation, dtype=float).reshape(3, 1).copy()
        self.kf.P = np.array(covariance, dtype=float)
        self.kf.R = np.array(covariance, dtype=float)
        self.initialized = True
        self.age_cycles = 0
        self.coasting_cycles = 0

    # ------------------------------------------------------------------ #
    #   P R E D I C T   +   C O R R E C T
    # ------------------------------------------------------------------ #
    def predict(self, control, process_cov: np.ndarray, dt: float) -> np.ndarray:
        if not self.initialized:
            raise RuntimeError(f"tag {self.tag_id}: predict before first detection")
        u = np.asarray(control, dtype=float).reshape(6, 1)
        B = control_matrix(self.kf.x, dt)
        Q = np.array(process_cov, dtype=float)
        self.kf.B = B
        self.kf.Q = Q
        self.kf.predict(u=u, B=B, Q=Q)
        self.age_cycles += 1
        self.coasting_cycles += 1
        return self.kf.x.copy()

    def correct(self, translation, covariance: np.ndarray) -> np.ndarray:
        if not self.initialized:
            raise RuntimeError(f"tag {self.tag_id}: correct before first detection")
        z = np.asarray(translation, dtype=float).reshape(3, 1)
        self.kf.R = np.array(covariance, dtype=float)
        self.kf.update(z, R=self.kf.R)
        self.coasting_cycles = 0
        return self.kf.x.copy()

    # ------------------------------------------------------------------ #
    #   R E P O R T
    # ------------------------------------------------------------------ #
    @property
    def position(self) -> Optional[np.ndarray]:
        """Current camera-frame estimate (3×1), or None before the first detection."""
        if not self.initialized:
            return None
        return self.kf.x.copy()

    @property
    def covariance(self) -> Optional[np.ndarray]:
        if not self.initialized:
            return None
        return self.kf.P.copy()

    def __repr__(self) -> str:
        if not self.initialized:
            return f"<TagFilter id={self.tag_id} (uninitialized)>"
        x, y, z = self.kf.x.ravel()
        return f"<TagFilter id={self.tag_id} ({x:.3f}, {y:.3f}, {z:.3f})>"
