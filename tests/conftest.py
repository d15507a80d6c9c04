"""Shared fixtures for the cardvault test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest

from cardvault.lookups.base import LookupService
from cardvault.orchestrator.models import JobKind
from cardvault.orchestrator.rate_limiter import RateLimiter
from cardvault.orchestrator.retry_policy import RetryPolicy, RetryStrategy
from cardvault.orchestrator.scheduler import JobScheduler
from cardvault.storage.cache import TTLCache

from tests.fakes import RecordingCardStore, RecordingCheckpointStore


@pytest.fixture
def card_store(tmp_path: Path):
    store = RecordingCardStore(tmp_path / "cards.db")
    yield store
    store.close()


@pytest.fixture
def checkpoint_store(tmp_path: Path):
    store = RecordingCheckpointStore(tmp_path / "checkpoints.db")
    yield store
    store.close()


@pytest.fixture
def cache() -> TTLCache:
    return TTLCache(default_ttl=60)


def unpaced_limiters() -> Dict[JobKind, RateLimiter]:
    return {
        kind: RateLimiter(
            name=kind.value,
            backoff_base_seconds=0.001,
            backoff_max_seconds=0.01,
        )
        for kind in (JobKind.IMAGE_ENRICHMENT, JobKind.PRICE_ENRICHMENT)
    }


@pytest.fixture
def make_scheduler(card_store, checkpoint_store, cache) -> Callable[..., JobScheduler]:
    """Factory for schedulers wired to the test stores with no pacing."""

    def factory(
        lookups: Optional[Dict[JobKind, LookupService]] = None,
        **overrides: Any,
    ) -> JobScheduler:
        options: Dict[str, Any] = {
            "store": card_store,
            "checkpoints": checkpoint_store,
            "lookups": lookups or {},
            "rate_limiters": unpaced_limiters(),
            "cache": cache,
            "store_retry": RetryPolicy(strategy=RetryStrategy.IMMEDIATE, max_attempts=3),
        }
        options.update(overrides)
        return JobScheduler(**options)

    return factory
