# pose_log.py
"""Decimated, non-blocking log of tag estimates."""
from __future__ import annotations

import concurrent.futures as futures
from pathlib import Path
from typing import IO, Iterable, List, Optional, Tuple

from tag_tracking.tracker import TagFilter

HEADER = "ts.sec ts.nsec id valid x y z\n"


def format_lines(filters: Iterable[TagFilter], stamp: Tuple[int, int]) -> str:
    """One ``sec nsec id 1 x y z`` line per filter holding an estimate."""
    sec, nsec = stamp
    out = []
    for flt in filters:
        state = flt.position
        if state is None:
            continue
        x, y, z = state.ravel()
        out.append(f"{sec} {nsec} {flt.tag_id} 1 {x:.6f} {y:.6f} {z:.6f}\n")
    return "".join(out)


class AsyncPoseLog:
    """
    Fire-and-forget file writer with at most one write in flight.

    Every ``decimation``-th call to :meth:`record` is a write attempt. The
    previous write is polled without blocking: if it is still running the
    cycle's lines are kept for the next write (prefixed by a blank line to
    mark the gap); if it failed, logging is disabled for good.
    """

    def __init__(self) -> None:
        self.path: Optional[Path] = None
        self.decimation = 1
        self._fp: Optional[IO[str]] = None
        self._executor: Optional[futures.ThreadPoolExecutor] = None
        self._pending: Optional[futures.Future] = None
        self._backlog: List[str] = []
        self.skipped = False

        # Counters
        self.total = 0
        self.writes = 0
        self.missed = 0

    # ------------------------------------------------------------------ #
    #   O P E N   /   C L O S E
    # ------------------------------------------------------------------ #
    @property
    def is_open(self) -> bool:
        return self._fp is not None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def open(self, path: str | Path, decimation: int = 1) -> bool:
        if decimation < 1:
            raise ValueError(f"decimation must be >= 1, got {decimation}")
        self.close()

        path = Path(path).expanduser()
        try:
            fp = path.open("w", encoding="utf-8")
            fp.write(HEADER)
            fp.flush()
        except OSError as exc:
            print(f"[PoseLog] Could not open {path}: {exc}")
            return False

        self.path = path
        self.decimation = int(decimation)
        self._fp = fp
        self._executor = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose-log")
        self._pending = None
        self._backlog.clear()
        self.skipped = False
        self.total = self.writes = self.missed = 0
        print(f"[PoseLog] Logging to {path} (1 write every {self.decimation} cycles)")
        return True

    def close(self) -> None:
        if not self.is_open:
            return
        self.drain()
        self._executor.shutdown(wait=True)
        self._fp.close()
        self._fp = None
        self._executor = None
        self._pending = None
        print(f"[PoseLog] Closed {self.path} ({self.writes} writes, {self.missed} missed)")

    def _disable(self, exc: BaseException) -> None:
        print(f"[PoseLog] Write to {self.path} failed, logging disabled: {exc}")
        self._executor.shutdown(wait=False)
        try:
            self._fp.close()
        except OSError as close_exc:
            print(f"[PoseLog] Close error: {close_exc}")
        self._fp = None
        self._executor = None
        self._pending = None
        self._backlog.clear()

    # ------------------------------------------------------------------ #
    #   W R I T E
    # ------------------------------------------------------------------ #
    @staticmethod
    def _write(fp: IO[str], data: str) -> int:
        n = fp.write(data)
        fp.flush()
        if n <= 0:
            raise OSError("nothing written")
        return n

    def record(self, filters: Iterable[TagFilter], stamp: Tuple[int, int]) -> bool:
        """Returns True if a write was issued this cycle."""
        if not self.is_open:
            return False

        self.total += 1
        if self.total % self.decimation != 0:
            return False

        lines = format_lines(filters, stamp)
        if self._pending is not None:
            if not self._pending.done():
                self._backlog.append(lines)
                self.skipped = True
                self.missed += 1
                return False
            exc = self._pending.exception()
            self._pending = None
            if exc is not None:
                self._disable(exc)
                return False

        batch = ("\n" if self.skipped else "") + "".join(self._backlog) + lines
        self._backlog.clear()
        self.skipped = False
        self._pending = self._executor.submit(self._write, self._fp, batch)
        self.writes += 1
        return True

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight write finishes. Not for the control loop."""
        if self._pending is None:
            return True
        done, _ = futures.wait([self._pending], timeout=timeout)
        return bool(done)
