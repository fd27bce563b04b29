# measurement.py
"""
Equivalent translation covariance of a tag pose measurement.

The detector gives one camera-frame pose per tag, but its real noise lives on
the 4 corner pixels. The reprojection Jacobian of those corners w.r.t. the tag
translation turns an isotropic pixel noise ``σ_p`` into a 3×3 covariance::

    R_eq = σ_p² · (JᵗJ)⁻¹,   J ∈ R^{8×3}
"""
from __future__ import annotations

import cv2
import numpy as np

from tag_tracking.common import Detection
from tag_tracking.config import TrackerConfig
from tag_tracking.frames import Calibration, skew


class DegenerateMeasurementError(ValueError):
    """Raised when the corner geometry cannot give a usable covariance."""


# Corner signs in the marker frame, counter-clockwise from (-, -)
_CORNER_SIGNS = np.array(
    [
        [-1.0, 1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0, 1.0],
        [0.0, 0.0, 0.0, 0.0],
    ]
)


def corner_offsets(length: float) -> np.ndarray:
    """3×4 corner positions of a square tag of side ``length`` (z = 0)."""
    return _CORNER_SIGNS * (length / 2.0)


def measurement_jacobian(
    length: float,
    C_R_M: np.ndarray,
    C_t_M,
    K: np.ndarray,
    min_depth: float = 0.0,
) -> np.ndarray:
    """
    Stacked 8×3 Jacobian of the 4 corner pixels w.r.t. the tag translation.

    For each corner ``c``, ``h = K (C_R_M c + C_t_M)`` is the homogeneous
    pixel. The full chain is ``J_pix(h) · [K | -K C_R_M [c]x]``; only the
    translation columns are kept since rotation is not estimated.
    """
    C_t_M = np.asarray(C_t_M, dtype=float).reshape(3, 1)
    corners = corner_offsets(length)
    J = np.zeros((8, 3))
    for i in range(4):
        ci = corners[:, i : i + 1]
        h = K @ (C_R_M @ ci + C_t_M)
        hx, hy, hz = h.ravel()
        if hz <= min_depth:
            raise DegenerateMeasurementError(
                f"corner {i} at depth {hz:.3g} is not in front of the camera"
            )

        # d(pixel)/d(homogeneous)
        J_pix = np.array(
            [
                [1.0 / hz, 0.0, -hx / hz / hz],
                [0.0, 1.0 / hz, -hy / hz / hz],
            ]
        )
        J_proj = np.zeros((3, 6))
        J_proj[:, 0:3] = K
        J_proj[:, 3:6] = -K @ C_R_M @ skew(ci)

        J_full = J_pix @ J_proj
        J[2 * i : 2 * i + 2, :] = J_full[:, 0:3]
    return J


def measurement_covariance(
    length: float,
    C_R_M: np.ndarray,
    C_t_M,
    K: np.ndarray,
    sigma_p: float,
    max_condition: float = np.inf,
    min_depth: float = 0.0,
) -> np.ndarray:
    """σ_p² · (JᵗJ)⁻¹, or DegenerateMeasurementError if JᵗJ is unusable."""
    J = measurement_jacobian(length, C_R_M, C_t_M, K, min_depth=min_depth)
    JtJ = J.T @ J
    if not np.all(np.isfinite(JtJ)):
        raise DegenerateMeasurementError("non-finite reprojection Jacobian")

    cond = np.linalg.cond(JtJ)
    if not np.isfinite(cond) or cond > max_condition:
        raise DegenerateMeasurementError(f"ill-conditioned JᵗJ (cond={cond:.3g})")

    R = sigma_p * sigma_p * np.linalg.inv(JtJ)
    return 0.5 * (R + R.T)


def detection_covariance(det: Detection, calib: Calibration, cfg: TrackerConfig) -> np.ndarray:
    """Measurement covariance of one detection under the current calibration."""
    rvec = np.asarray(det.rotation, dtype=np.float64).reshape(3, 1)
    C_R_M, _ = cv2.Rodrigues(rvec)
    return measurement_covariance(
        cfg.marker_length_m,
        C_R_M,
        det.t,
        calib.K,
        cfg.pixel_noise_std,
        max_condition=cfg.max_condition,
        min_depth=cfg.min_depth_m,
    )
