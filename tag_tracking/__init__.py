# tag_tracking/__init__.py
"""Multi-tag position tracking – re-export high-level API."""
from .processor import TagTrackingProcessor      # noqa: F401
from .config import (                            # noqa: F401
    CameraConfig, LogConfig, TrackerConfig,
)
from .common import (                            # noqa: F401
    Detection, Extrinsics, StepResult, TagPose, VehicleState,
)
from .publisher import PoseBoard                 # noqa: F401
