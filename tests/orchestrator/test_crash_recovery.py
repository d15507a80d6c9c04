"""Tests for crash detection and interrupted lineage recovery."""

from pathlib import Path

from cardvault.orchestrator.audit import AuditLogger
from cardvault.orchestrator.checkpoint import CheckpointStore
from cardvault.orchestrator.crash_recovery import (
    MARKER_NAME,
    CrashRecoveryManager,
    RecoveryStateTracker,
)
from cardvault.orchestrator.models import Checkpoint, JobKind, JobSpec, JobStatus


class TestRecoveryStateTracker:
    def test_marker_lifecycle(self, tmp_path: Path):
        tracker = RecoveryStateTracker(tmp_path)
        assert not tracker.is_recovering_from_crash()
        assert tracker.get_crash_info() is None

        tracker.mark_running()

        assert (tmp_path / MARKER_NAME).exists()
        assert tracker.is_recovering_from_crash()
        assert "pid" in tracker.get_crash_info()

        tracker.clear()
        assert not tracker.is_recovering_from_crash()

    def test_unreadable_marker_still_signals_crash(self, tmp_path: Path):
        (tmp_path / MARKER_NAME).write_text("{not json")
        tracker = RecoveryStateTracker(tmp_path)

        assert tracker.is_recovering_from_crash()
        assert tracker.get_crash_info() is None


class TestCrashRecoveryManager:
    def test_running_lineages_become_paused(self, tmp_path: Path):
        checkpoints = CheckpointStore(tmp_path / "checkpoints.db")
        spec = JobSpec(kind=JobKind.PRICE_ENRICHMENT)
        checkpoints.save(
            "price_enrichment",
            Checkpoint(cursor=17, added=15, status="running", spec_json=spec.model_dump_json()),
        )
        checkpoints.save("image_enrichment", Checkpoint(cursor=3, status="completed"))
        audit = AuditLogger(tmp_path / "audit")
        manager = CrashRecoveryManager(checkpoints, tmp_path, audit_logger=audit)
        manager.tracker.mark_running()

        report = manager.recover()

        assert report.was_successful()
        assert [lineage.job_key for lineage in report.interrupted] == ["price_enrichment"]
        (lineage,) = report.resumable
        assert lineage.cursor == 17
        assert lineage.spec == spec
        assert checkpoints.load("price_enrichment").status == JobStatus.PAUSED.value
        assert checkpoints.load("price_enrichment").cursor == 17
        assert checkpoints.load("image_enrichment").status == "completed"
        (event,) = list(audit.iter_events())
        assert event["action"] == "recover_interrupted_lineages"
        checkpoints.close()

    def test_unreadable_spec_is_reported(self, tmp_path: Path):
        checkpoints = CheckpointStore(tmp_path / "checkpoints.db")
        checkpoints.save("image_enrichment", Checkpoint(cursor=2, status="running", spec_json="{}"))
        manager = CrashRecoveryManager(checkpoints, tmp_path)

        report = manager.recover()

        assert not report.was_successful()
        assert report.resumable == []
        assert report.interrupted[0].job_key == "image_enrichment"
        assert checkpoints.load("image_enrichment").status == "paused"
        checkpoints.close()
