"""Simple telemetry recorder for job runs.

Persists one line per finished worker run plus an aggregated summary that
operators can inspect locally or through ``cardvault jobs telemetry``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_COUNTERS = ("processed", "succeeded", "failed", "skipped")


def _empty_bucket() -> Dict[str, float]:
    bucket: Dict[str, float] = {"count": 0, "duration": 0.0}
    bucket.update({name: 0 for name in _COUNTERS})
    return bucket


@dataclass
class TelemetryRecorder:
    output_dir: Path
    metrics_file: str = "telemetry.log"
    summary_file: str = "telemetry_summary.json"
    _by_status: Dict[str, Dict[str, float]] = field(default_factory=dict)
    _by_kind: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._load_existing()

    def _load_existing(self) -> None:
        """Continue aggregating from the summary an earlier process left behind."""
        path = self.output_dir / self.summary_file
        if not path.exists():
            return
        try:
            summary = json.loads(path.read_text())
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable telemetry summary", extra={"summary_path": str(path)})
            return
        for target, section in ((self._by_status, "statuses"), (self._by_kind, "kinds")):
            for name, stored in (summary.get(section) or {}).items():
                bucket = _empty_bucket()
                for counter in bucket:
                    bucket[counter] = stored.get(counter, bucket[counter])
                target[name] = bucket

    def record(
        self,
        job_id: str,
        kind: str,
        status: str,
        duration: float,
        *,
        processed: int = 0,
        succeeded: int = 0,
        failed: int = 0,
        skipped: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        counters = {
            "processed": processed,
            "succeeded": succeeded,
            "failed": failed,
            "skipped": skipped,
        }
        entry: Dict[str, Any] = {
            "job_id": job_id,
            "kind": kind,
            "status": status,
            "duration": duration,
            "timestamp": datetime.utcnow().isoformat(),
            **counters,
        }
        if duration > 0:
            entry["items_per_second"] = round(processed / duration, 3)
        if metadata:
            entry["metadata"] = metadata

        for bucket in (
            self._by_status.setdefault(status, _empty_bucket()),
            self._by_kind.setdefault(kind, _empty_bucket()),
        ):
            bucket["count"] += 1
            bucket["duration"] += duration
            for name, value in counters.items():
                bucket[name] += value

        with (self.output_dir / self.metrics_file).open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(entry) + "\n")
        (self.output_dir / self.summary_file).write_text(
            json.dumps(self._build_summary(), indent=2)
        )

    def load_summary(self) -> Dict[str, Any]:
        path = self.output_dir / self.summary_file
        if not path.exists():
            return self._build_summary()
        return json.loads(path.read_text())

    def _build_summary(self) -> Dict[str, Any]:
        total_runs = sum(int(bucket["count"]) for bucket in self._by_status.values())
        total_processed = sum(int(bucket["processed"]) for bucket in self._by_status.values())
        total_duration = sum(bucket["duration"] for bucket in self._by_status.values())
        return {
            "generated_at": datetime.utcnow().isoformat(),
            "overall": {
                "runs": total_runs,
                "processed": total_processed,
                "duration": total_duration,
                "avg_duration": total_duration / total_runs if total_runs else 0.0,
            },
            "statuses": {status: dict(bucket) for status, bucket in self._by_status.items()},
            "kinds": {kind: dict(bucket) for kind, bucket in self._by_kind.items()},
        }
