"""Tests for the hash-chained audit log."""

import json
from datetime import datetime
from pathlib import Path

from cardvault.orchestrator.audit import AuditEvent, AuditLogger


def test_events_are_chained(tmp_path: Path) -> None:
    audit = AuditLogger(tmp_path)

    audit.record_job_event(job_id="job-1", action="start", status="accepted", metadata={"job_kind": "ingestion"})
    audit.record_job_event(job_id="job-1", action="finish", status="completed")

    first, second = list(audit.iter_events())
    assert first["chain_prev"] is None
    assert second["chain_prev"] == first["chain_hash"]
    assert first["metadata"] == {"job_kind": "ingestion"}
    assert "metadata" not in second
    assert audit.verify()


def test_tampering_breaks_verification(tmp_path: Path) -> None:
    audit = AuditLogger(tmp_path)
    audit.record(
        AuditEvent(
            job_id="job-1",
            source="job_scheduler",
            action="cancel",
            status="cancelled",
            timestamp=datetime(2024, 3, 1, 12, 0, 0),
        )
    )
    audit.record_job_event(job_id="job-2", action="start", status="accepted")

    lines = audit.path.read_text().splitlines()
    entry = json.loads(lines[0])
    entry["status"] = "completed"
    lines[0] = json.dumps(entry)
    audit.path.write_text("\n".join(lines) + "\n")

    assert not audit.verify()


def test_chain_continues_across_instances(tmp_path: Path) -> None:
    AuditLogger(tmp_path).record_job_event(job_id="a", action="start", status="accepted")
    AuditLogger(tmp_path).record_job_event(job_id="b", action="start", status="accepted")

    assert AuditLogger(tmp_path).verify()
    assert len(list(AuditLogger(tmp_path).iter_events())) == 2
