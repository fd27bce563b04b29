# live_tuning.py
"""Hot-reloaded tracker parameters from a JSON file next to the replay."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from tag_tracking.common import Extrinsics

TUNABLE = ("marker_length_m", "pixel_noise_std", "log_decimation", "extrinsics")


def parse_extrinsics(blob: Optional[Dict[str, Any]]) -> Optional[Extrinsics]:
    """
    ``{"trans": {"tx",..}, "rot": {"roll",..}}`` or a flat
    ``{"tx",..,"roll",..}`` mapping → Extrinsics.
    """
    if not blob:
        return None
    trans = blob.get("trans", blob)
    rot = blob.get("rot", blob)
    return Extrinsics(
        tx=float(trans.get("tx", 0.0)),
        ty=float(trans.get("ty", 0.0)),
        tz=float(trans.get("tz", 0.0)),
        roll=float(rot.get("roll", 0.0)),
        pitch=float(rot.get("pitch", 0.0)),
        yaw=float(rot.get("yaw", 0.0)),
    )


class TuningFile:
    """
    JSON file holding any of ``TUNABLE``. :meth:`poll` hands back
    ``apply_tuning`` keyword arguments whenever the file changed.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser().resolve()
        self._stamp: Tuple[float, int] = (0.0, -1)  # (mtime, size)
        self.tuning: Dict[str, Any] = {}
        print(f"[Tuning] Watching: {self.path}")

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            stat = self.path.stat()
            if (stat.st_mtime, stat.st_size) == self._stamp:
                return None
            with self.path.open("r", encoding="utf-8") as fp:
                blob = json.load(fp)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            print(f"[Tuning] Ignoring {self.path.name}: {exc}")
            return None
        self._stamp = (stat.st_mtime, stat.st_size)
        if not isinstance(blob, dict):
            print(f"[Tuning] Ignoring {self.path.name}: expected a JSON object")
            return None

        unknown = sorted(set(blob) - set(TUNABLE))
        if unknown:
            print(f"[Tuning] Unknown keys ignored: {', '.join(unknown)}")
        return blob

    def poll(self) -> Optional[Dict[str, Any]]:
        """New tuning kwargs if the file changed since the last poll, else None."""
        blob = self._read()
        if blob is None:
            return None
        self.tuning = {
            "marker_length_m": blob.get("marker_length_m"),
            "pixel_noise_std": blob.get("pixel_noise_std"),
            "log_decimation": blob.get("log_decimation"),
            "extrinsics": parse_extrinsics(blob.get("extrinsics")),
        }
        print(f"[Tuning] Loaded {self.path.name}")
        return self.tuning
