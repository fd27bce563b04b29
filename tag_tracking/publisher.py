# publisher.py
"""In-process stand-in for the per-identity pose output port."""
from __future__ import annotations

from typing import Dict, List, Optional

from tag_tracking.common import TagPose


class PoseBoard:
    """Latest world-frame pose per tag, written under ``TagPose.key``."""

    def __init__(self, keep_history: bool = False) -> None:
        self.latest: Dict[str, TagPose] = {}
        self.history: Optional[List[TagPose]] = [] if keep_history else None

    def __call__(self, pose: TagPose) -> None:
        self.latest[pose.key] = pose
        if self.history is not None:
            self.history.append(pose)

    def get(self, tag_id: int) -> Optional[TagPose]:
        return self.latest.get(str(tag_id))

    def __len__(self) -> int:
        return len(self.latest)
