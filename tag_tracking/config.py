# config.py
"""Typed configuration blobs for the whole system."""
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class CameraConfig:
    # Pinhole intrinsics (px)
    fx: float = 600.0
    fy: float = 600.0
    cx: float = 320.0
    cy: float = 240.0

    @property
    def K(self) -> np.ndarray:
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ]
        )


@dataclass
class TrackerConfig:
    predict_period_s: float = 0.01         # fixed control period
    marker_length_m: float = 0.16          # side of every tag
    pixel_noise_std: float = 3.0           # px, isotropic corner noise
    nostate_process_noise: float = 1e-3    # m², used without vehicle state
    max_condition: float = 1e10            # cond(JᵗJ) above this is rejected
    min_depth_m: float = 1e-3              # corners closer than this are degenerate


@dataclass
class LogConfig:
    path: Optional[str] = None             # None → logging disabled
    decimation: int = 1                    # write attempt every Nth cycle
