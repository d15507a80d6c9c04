"""Tests for run telemetry."""

import json
from pathlib import Path

from cardvault.orchestrator.metrics import TelemetryRecorder


def test_record_writes_entry_and_summary(tmp_path: Path) -> None:
    recorder = TelemetryRecorder(tmp_path)

    recorder.record("job-1", "image_enrichment", "completed", 2.0, processed=10, succeeded=8, failed=2)
    recorder.record("job-2", "ingestion", "paused", 1.0, processed=4, skipped=1)

    lines = (tmp_path / "telemetry.log").read_text().splitlines()
    assert len(lines) == 2
    entry = json.loads(lines[0])
    assert entry["items_per_second"] == 5.0
    assert entry["succeeded"] == 8

    summary = recorder.load_summary()
    assert summary["overall"]["runs"] == 2
    assert summary["overall"]["processed"] == 14
    assert summary["overall"]["avg_duration"] == 1.5
    assert summary["statuses"]["paused"]["skipped"] == 1
    assert summary["kinds"]["image_enrichment"]["failed"] == 2


def test_empty_summary(tmp_path: Path) -> None:
    summary = TelemetryRecorder(tmp_path).load_summary()

    assert summary["overall"]["runs"] == 0
    assert summary["kinds"] == {}


def test_summary_accumulates_across_recorders(tmp_path: Path) -> None:
    TelemetryRecorder(tmp_path).record("job-1", "ingestion", "completed", 1.0, processed=4, succeeded=4)
    TelemetryRecorder(tmp_path).record("job-2", "ingestion", "completed", 3.0, processed=6, skipped=2)

    summary = TelemetryRecorder(tmp_path).load_summary()

    assert summary["overall"]["runs"] == 2
    assert summary["overall"]["processed"] == 10
    assert summary["overall"]["avg_duration"] == 2.0
    assert summary["kinds"]["ingestion"]["succeeded"] == 4
    assert summary["statuses"]["completed"]["skipped"] == 2


def test_unreadable_summary_starts_fresh(tmp_path: Path) -> None:
    (tmp_path / "telemetry_summary.json").write_text("{not json")

    recorder = TelemetryRecorder(tmp_path)
    recorder.record("job-1", "price_enrichment", "failed", 0.5, processed=1, failed=1)

    assert recorder.load_summary()["overall"]["runs"] == 1
