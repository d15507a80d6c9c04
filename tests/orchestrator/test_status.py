"""Tests for the status report."""

from __future__ import annotations

import pytest

from cardvault.orchestrator.models import JobKind, JobSpec
from cardvault.orchestrator.status import collect_status_report

from tests.fakes import FakeLookup, fast_config, seed_cards


@pytest.mark.asyncio()
async def test_report_covers_jobs_capacity_and_checkpoints(make_scheduler, card_store, checkpoint_store, cache) -> None:
    seed_cards(card_store, 2)
    scheduler = make_scheduler({JobKind.IMAGE_ENRICHMENT: FakeLookup()})
    job_id = await scheduler.start(JobSpec(kind=JobKind.IMAGE_ENRICHMENT, config=fast_config()))
    await scheduler.join(job_id, timeout=5)
    cache.set("card:1", "cached")

    report = collect_status_report(scheduler, checkpoint_store)

    assert report["capacity"]["running"] == 0
    assert report["jobs_by_status"] == {"completed": 1}
    assert report["jobs"][0]["job_id"] == job_id
    assert report["jobs"][0]["kind"] == "image_enrichment"
    assert report["cache"]["size"] == 1
    assert report["schedules"] == []
    assert report["checkpoints"]["image_enrichment"]["cursor"] == 2
    assert report["checkpoints"]["image_enrichment"]["status"] == "completed"


def test_report_without_checkpoints(make_scheduler) -> None:
    report = collect_status_report(make_scheduler())

    assert report["jobs"] == []
    assert "checkpoints" not in report
