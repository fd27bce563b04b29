# main.py
"""
Entry-point for the tag-tracking system: replays a recorded session.

Session format
--------------
One JSON object per line, one line per control period::

    {"extrinsics": {"trans": {"tx": 0, ...}, "rot": {"roll": 0, ...}},
     "vehicle": {"position": [x, y, z], "attitude": [qw, qx, qy, qz],
                 "velocity": [vx, vy, vz], "angular_velocity": [wx, wy, wz],
                 "vel_cov": [6 values], "avel_cov": [6 values]},
     "detections": [{"id": 7, "translation": [x, y, z], "rotation": [rx, ry, rz]}]}

Every key is optional; ``"vehicle": null`` means no odometry that period.

Live-tuning
-----------
With ``--params runtime_params.json`` the file is re-read whenever it changes
and marker length, pixel noise, log decimation and extrinsics take effect on
the very next period. See ``tag_tracking/live_tuning.py``.
"""
from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from tag_tracking.common import Detection, StepResult, TagPose, VehicleState
from tag_tracking.config import CameraConfig, LogConfig, TrackerConfig
from tag_tracking.live_tuning import TuningFile, parse_extrinsics
from tag_tracking.processor import TagTrackingProcessor


# ────────────────────────────────────────────────────────────────────────────
#   S E S S I O N   P A R S I N G
# ────────────────────────────────────────────────────────────────────────────
def _vehicle(blob: Optional[Dict[str, Any]]) -> Optional[VehicleState]:
    if not blob:
        return None
    return VehicleState(
        position=tuple(blob.get("position", (0.0, 0.0, 0.0))),
        attitude=tuple(blob.get("attitude", (1.0, 0.0, 0.0, 0.0))),
        velocity=tuple(blob.get("velocity", (0.0, 0.0, 0.0))),
        angular_velocity=tuple(blob.get("angular_velocity", (0.0, 0.0, 0.0))),
        vel_cov=tuple(blob.get("vel_cov", (0.0,) * 6)),
        avel_cov=tuple(blob.get("avel_cov", (0.0,) * 6)),
    )


def _detections(blobs: List[Dict[str, Any]]) -> List[Detection]:
    return [
        Detection(
            tag_id=int(b["id"]),
            translation=tuple(b["translation"]),
            rotation=tuple(b.get("rotation", (0.0, 0.0, 0.0))),
        )
        for b in blobs
    ]


def read_session(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as fp:
        for lineno, line in enumerate(fp, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as exc:
                print(f"[Replay] Skipping line {lineno}: {exc}", file=sys.stderr)


def _print_pose(pose: TagPose) -> None:
    x, y, z = pose.position
    print(f"{pose.sec}.{pose.nsec:09d} tag={pose.tag_id} W=({x:.4f}, {y:.4f}, {z:.4f})")


# ────────────────────────────────────────────────────────────────────────────
#   M A I N
# ────────────────────────────────────────────────────────────────────────────
def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Replay a tag-tracking session")
    ap.add_argument("session", type=Path, help="JSON-lines session file")
    ap.add_argument("--log", default=None, help="Write decimated estimates to this file")
    ap.add_argument("--decimation", type=int, default=1)
    ap.add_argument("--marker-length", type=float, default=TrackerConfig.marker_length_m)
    ap.add_argument("--period", type=float, default=TrackerConfig.predict_period_s)
    ap.add_argument("--params", default=None, help="Runtime JSON for live tuning")
    ap.add_argument("--realtime", action="store_true", help="Sleep to keep the period")
    args = ap.parse_args(argv)

    # -------------------- Config blobs --------------------
    cam_cfg = CameraConfig()
    trk_cfg = TrackerConfig(marker_length_m=args.marker_length, predict_period_s=args.period)
    log_cfg = LogConfig(path=args.log, decimation=args.decimation)

    # ------------------------ Banner ----------------------
    print(
        f"Camera: fx={cam_cfg.fx}, fy={cam_cfg.fy}, "
        f"c=({cam_cfg.cx}, {cam_cfg.cy})"
    )
    print(
        f"Tracker: period={trk_cfg.predict_period_s}s, "
        f"marker={trk_cfg.marker_length_m}m, σp={trk_cfg.pixel_noise_std}px"
    )
    print(f"Log: {log_cfg.path or 'DISABLED'} (decimation={log_cfg.decimation})")

    proc = TagTrackingProcessor(cam_cfg, trk_cfg, log_cfg, publish=_print_pose)
    tuning_file = TuningFile(args.params) if args.params else None

    # ------------------------ Run -------------------------
    try:
        for cycle in read_session(args.session):
            t0 = time.time()
            tuning = tuning_file.poll() if tuning_file else None
            if tuning:
                proc.apply_tuning(**tuning)

            extr = parse_extrinsics(cycle.get("extrinsics"))
            if extr is not None and extr != proc.extrinsics:
                proc.set_extrinsics(extr)
            proc.add_detections(_detections(cycle.get("detections", [])))
            result = proc.step(_vehicle(cycle.get("vehicle")))
            if result is StepResult.WAIT:
                print("[Replay] waiting for extrinsics / first detection")

            if args.realtime:
                sleep_t = trk_cfg.predict_period_s - (time.time() - t0)
                if sleep_t > 0:
                    time.sleep(sleep_t)
    except KeyboardInterrupt:
        print("\n[Replay] Stopped by user.")
    finally:
        proc.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
