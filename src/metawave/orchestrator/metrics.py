"""Telemetry recorder for analysis runs.

Appends one JSON line per run to ``telemetry.log`` and keeps an aggregated
``telemetry_summary.json`` with per-status counts, average durations and
scoring totals, so operators can inspect pipeline health locally.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from metawave.models.timestamps import utc_now


def _empty_stats() -> Dict[str, float]:
    return {"count": 0, "duration": 0.0, "scored": 0, "failed_notes": 0}


@dataclass
class TelemetryRecorder:
    output_dir: Path
    metrics_file: str = "telemetry.log"
    summary_file: str = "telemetry_summary.json"
    _stats: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        run_id: str,
        run_type: str,
        duration: float,
        status: str,
        *,
        scored: Optional[int] = None,
        failed: Optional[int] = None,
        phase_durations: Optional[Dict[str, float]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "run_id": run_id,
            "run_type": run_type,
            "duration": duration,
            "status": status,
            "timestamp": utc_now().isoformat(),
        }
        if scored is not None:
            entry["scored"] = scored
        if failed is not None:
            entry["failed_notes"] = failed
        if phase_durations:
            entry["phase_durations"] = {k: round(v, 6) for k, v in phase_durations.items()}
        if metadata:
            entry["metadata"] = metadata

        status_stats = self._stats.setdefault(status, _empty_stats())
        status_stats["count"] += 1
        status_stats["duration"] += duration
        if scored is not None:
            status_stats["scored"] += scored
        if failed is not None:
            status_stats["failed_notes"] += failed

        path = self.output_dir / self.metrics_file
        with path.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(entry) + "\n")

        summary_path = self.output_dir / self.summary_file
        summary_path.write_text(json.dumps(self._build_summary(), indent=2))

    def _build_summary(self) -> Dict[str, Any]:
        statuses: Dict[str, Any] = {}
        total_runs = 0
        total_duration = 0.0
        total_scored = 0
        total_failed = 0
        for status, stats in self._stats.items():
            count = int(stats["count"])
            duration = stats["duration"]
            statuses[status] = {
                "count": count,
                "avg_duration": duration / count if count else 0.0,
                "scored": int(stats["scored"]),
                "failed_notes": int(stats["failed_notes"]),
            }
            total_runs += count
            total_duration += duration
            total_scored += int(stats["scored"])
            total_failed += int(stats["failed_notes"])

        return {
            "overall": {
                "runs": total_runs,
                "avg_duration": total_duration / total_runs if total_runs else 0.0,
                "scored": total_scored,
                "failed_notes": total_failed,
            },
            "statuses": statuses,
        }
