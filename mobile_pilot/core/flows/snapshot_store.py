"""
Snapshot Store - per-run audit trail of executed steps

For every captured step the store writes the UI dump (step_<N>.xml) and the
screenshot (step_<N>.png) into the run directory, then rewrites timeline.json.
A step index that repeats (GOTO loops, synthetic -1 records) gets a numeric
suffix so earlier artifacts are never overwritten.

Pass run_dir=None to keep the timeline in memory only.
"""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from mobile_pilot.core.flows.flow_models import Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Collects Snapshots for one run

    Storage Strategy:
    - timeline: one Snapshot per executed program cycle
    - synthetic: engine-initiated records (dialog dismissals, auto-scrolls)
    - timeline.json rewritten after every capture
    """

    def __init__(self, run_dir: Optional[str] = None, title: str = ""):
        self.run_dir: Optional[Path] = Path(run_dir) if run_dir else None
        self.title = title
        self.timeline: List[Snapshot] = []
        self.synthetic: List[Snapshot] = []
        self._name_counts: Dict[int, int] = {}
        self._lock = Lock()

        if self.run_dir is not None:
            self.run_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"[SnapshotStore] Writing artifacts to {self.run_dir}")

    @classmethod
    def for_new_run(cls, runs_dir: str, title: str = "") -> "SnapshotStore":
        """Store rooted at a fresh timestamped directory under `runs_dir`."""
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return cls(str(Path(runs_dir) / f"run_{stamp}"), title=title)

    def _artifact_stem(self, step_index: int) -> str:
        count = self._name_counts.get(step_index, 0) + 1
        self._name_counts[step_index] = count
        if step_index >= 0 and count == 1:
            return f"step_{step_index}"
        return f"step_{step_index}_{count}"

    def capture(
        self,
        driver,
        step_index: int,
        step_type: str,
        target_hint: Optional[str],
        success: bool,
        locator: Optional[str] = None,
        notes: Optional[str] = None,
        synthetic: bool = False,
    ) -> Snapshot:
        """Record one step, saving the current UI dump and screenshot when a run dir is set."""
        with self._lock:
            ui_path: Optional[str] = None
            png_path: Optional[str] = None

            if self.run_dir is not None:
                stem = self._artifact_stem(step_index)
                ui_path = self._write_text(stem + ".xml", driver.page_source())
                png_path = self._write_bytes(stem + ".png", driver.screenshot_png())

            snapshot = Snapshot(
                step_index=step_index,
                step_type=step_type,
                target_hint=target_hint,
                success=success,
                locator=locator,
                ui_dump_path=ui_path,
                screenshot_path=png_path,
                notes=notes,
            )
            (self.synthetic if synthetic else self.timeline).append(snapshot)
            self._write_timeline()
            return snapshot

    def _write_text(self, name: str, content: str) -> Optional[str]:
        if not content:
            return None
        path = self.run_dir / name
        try:
            path.write_text(content, encoding="utf-8")
            return str(path)
        except OSError as e:
            logger.warning(f"[SnapshotStore] Failed to write {path}: {e}")
            return None

    def _write_bytes(self, name: str, content: bytes) -> Optional[str]:
        if not content:
            return None
        path = self.run_dir / name
        try:
            path.write_bytes(content)
            return str(path)
        except OSError as e:
            logger.warning(f"[SnapshotStore] Failed to write {path}: {e}")
            return None

    def _write_timeline(self):
        if self.run_dir is None:
            return
        try:
            with open(self.run_dir / "timeline.json", "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "title": self.title,
                        "snapshots": [asdict(s) for s in self.timeline],
                        "synthetic": [asdict(s) for s in self.synthetic],
                    },
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
        except OSError as e:
            logger.error(f"[SnapshotStore] Failed to write timeline: {e}")
