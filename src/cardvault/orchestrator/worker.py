"""Batch worker loops for enrichment and ingestion jobs.

A worker owns one job for one run (start or resume until it stops). It
processes strictly sequentially and only suspends at four points: while
waiting on the rate limiter, during the inter-item delay, during the
inter-batch delay, and while persisting a checkpoint. Pause and cancel
requests are observed at the first three; an in-flight lookup or store
write always completes.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar

from ..ingestion.name_resolver import NameResolver
from ..ingestion.sources import CsvInputSource
from ..lookups.base import LookupOutcome, LookupResult, LookupService
from ..storage.cache import TTLCache, record_cache_key, set_cache_key
from ..storage.records import CardRecord, MissingField, NewCard, RecordStore
from .checkpoint import CheckpointStore
from .exceptions import StoreUnavailableError
from .models import Checkpoint, Job, JobKind, JobStatus
from .rate_limiter import RateLimiter
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobControl:
    """Stop signal shared by the scheduler and one worker run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[JobStatus] = None

    def request_stop(self, reason: JobStatus) -> None:
        """Ask the worker to stop as ``PAUSED`` or ``CANCELLED``.

        A cancel overrides an earlier pause request.
        """
        if reason not in (JobStatus.PAUSED, JobStatus.CANCELLED):
            raise ValueError(f"cannot stop a job as {reason.value}")
        if self._reason is not JobStatus.CANCELLED:
            self._reason = reason
        self._event.set()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[JobStatus]:
        return self._reason

    @property
    def event(self) -> asyncio.Event:
        return self._event

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless a stop is requested first. Returns True if stopped."""
        if self._event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class WorkerOutcome:
    status: JobStatus
    error: Optional[str] = None


@dataclass
class BatchTally:
    """Work done since the last persisted checkpoint."""

    cursor: Optional[int] = None
    added: int = 0
    skipped: int = 0
    errored: int = 0

    @property
    def empty(self) -> bool:
        return self.cursor is None


class BatchWorker:
    """Shared run loop plumbing: checkpoints, store retries and stop handling."""

    def __init__(
        self,
        job: Job,
        *,
        store: RecordStore,
        checkpoints: CheckpointStore,
        control: JobControl,
        cache: Optional[TTLCache] = None,
        store_retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.job = job
        self._store = store
        self._checkpoints = checkpoints
        self._control = control
        self._cache = cache
        self._retry = store_retry or RetryPolicy()
        self._checkpoint = Checkpoint()
        self._pending = BatchTally()

    @property
    def config(self):
        return self.job.spec.config

    async def run(self) -> WorkerOutcome:
        key = self.job.job_key
        try:
            await self._store_call(
                self._checkpoints.mark_status,
                key,
                JobStatus.RUNNING,
                spec_json=self.job.spec.model_dump_json(),
            )
            self._checkpoint = await self._store_call(self._checkpoints.load, key)
            self.job.stats.cursor = self._checkpoint.cursor
            outcome = await self._run_batches()
        except StoreUnavailableError as exc:
            logger.error(
                "Job failed: store unavailable after retries",
                extra={"job_id": self.job.job_id, "job_key": key, "error": str(exc)},
            )
            await self._flush_quietly()
            outcome = WorkerOutcome(JobStatus.FAILED, error=str(exc))

        try:
            self._checkpoints.mark_status(key, outcome.status)
        except StoreUnavailableError as exc:
            logger.error(
                "Could not record final lineage status",
                extra={"job_key": key, "status": outcome.status.value, "error": str(exc)},
            )
        return outcome

    async def _run_batches(self) -> WorkerOutcome:
        raise NotImplementedError

    def _stopped(self) -> WorkerOutcome:
        return WorkerOutcome(self._control.reason or JobStatus.PAUSED)

    async def _store_call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call a store operation, retrying ``StoreUnavailableError`` with backoff."""
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except StoreUnavailableError as exc:
                attempt += 1
                if not self._retry.should_retry(attempt):
                    raise
                delay = self._retry.calculate_delay(attempt - 1)
                logger.warning(
                    "Store call failed, retrying",
                    extra={
                        "job_id": self.job.job_id,
                        "operation": getattr(func, "__name__", str(func)),
                        "attempt": attempt,
                        "delay_seconds": round(delay, 3),
                        "error": str(exc),
                    },
                )
                await asyncio.sleep(delay)

    def _note(self, cursor: int, *, added: int = 0, skipped: int = 0, errored: int = 0) -> None:
        tally = self._pending
        tally.cursor = cursor
        tally.added += added
        tally.skipped += skipped
        tally.errored += errored
        stats = self.job.stats
        stats.processed += 1
        stats.succeeded += added
        stats.failed += errored
        stats.skipped += skipped

    async def _flush(self) -> None:
        """Persist the pending tally as the new lineage checkpoint."""
        tally = self._pending
        if tally.empty:
            return
        updated = self._checkpoint.advance(
            tally.cursor,
            added=tally.added,
            skipped=tally.skipped,
            errored=tally.errored,
        )
        self._checkpoint = await self._store_call(self._checkpoints.save, self.job.job_key, updated)
        self._pending = BatchTally()
        self.job.stats.cursor = self._checkpoint.cursor
        logger.debug(
            "Batch checkpointed",
            extra={
                "job_id": self.job.job_id,
                "cursor": self._checkpoint.cursor,
                "processed": self.job.stats.processed,
            },
        )

    async def _flush_quietly(self) -> None:
        try:
            await self._flush()
        except StoreUnavailableError as exc:
            logger.error(
                "Could not checkpoint partial batch",
                extra={"job_id": self.job.job_id, "error": str(exc)},
            )

    def _invalidate(self, key: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(key)


def _image_fields(value: Any) -> Dict[str, Any]:
    return {"front_image_url": str(value)}


def _price_fields(value: Any) -> Dict[str, Any]:
    return {"estimated_value": float(value), "price_updated_at": datetime.utcnow()}


ENRICHMENT_TARGETS = {
    JobKind.IMAGE_ENRICHMENT: (MissingField.IMAGE, _image_fields),
    JobKind.PRICE_ENRICHMENT: (MissingField.PRICE, _price_fields),
}


class EnrichmentWorker(BatchWorker):
    """Fills one missing field group on records selected by its predicate.

    Within a run records are fetched with ``id > cursor`` so a record whose
    lookup failed is not selected again until the lineage starts over.
    Already-enriched records never match the predicate, which keeps
    re-runs and lost checkpoint writes from enriching anything twice.
    """

    def __init__(
        self,
        job: Job,
        *,
        lookup: LookupService,
        rate_limiter: RateLimiter,
        **kwargs: Any,
    ) -> None:
        super().__init__(job, **kwargs)
        self._missing, self._to_fields = ENRICHMENT_TARGETS[job.kind]
        self._lookup = lookup
        self._limiter = rate_limiter
        self._throttled = False

    async def _run_batches(self) -> WorkerOutcome:
        config = self.config
        stats = self.job.stats
        while True:
            if self._control.stop_requested:
                return self._stopped()
            remaining = config.max_items - stats.processed
            if remaining <= 0:
                return WorkerOutcome(JobStatus.COMPLETED)

            limit = min(config.batch_size, remaining)
            records = await self._store_call(
                self._store.fetch_matching, self._missing, limit, self._checkpoint.cursor
            )
            if not records:
                return WorkerOutcome(JobStatus.COMPLETED)
            logger.debug(
                "Fetched batch",
                extra={"job_id": self.job.job_id, "batch_size": len(records)},
            )

            for record in records:
                result = await self._lookup_record(record)
                if result is None:
                    break
                await self._apply(record, result)
                if await self._control.sleep(config.item_delay_seconds):
                    break

            await self._flush()

            if self._throttled:
                message = (
                    f"Paused after {config.throttle_pause_threshold} consecutive "
                    f"rate-limited lookups"
                )
                logger.warning(message, extra={"job_id": self.job.job_id})
                return WorkerOutcome(JobStatus.PAUSED, error=message)
            if self._control.stop_requested:
                return self._stopped()
            if await self._control.sleep(config.batch_delay_seconds):
                return self._stopped()

    async def _lookup_record(self, record: CardRecord) -> Optional[LookupResult]:
        """Look a record up, backing off on throttling.

        Returns None when the run must stop before the record is finished:
        a stop was requested, or throttling persisted past the threshold.
        """
        consecutive = 0
        while True:
            if not await self._limiter.acquire(self._control.event):
                return None
            try:
                result = await self._lookup.lookup(record.query_key)
            except Exception as exc:
                logger.warning(
                    "Lookup raised",
                    extra={"job_id": self.job.job_id, "record_id": record.id},
                    exc_info=True,
                )
                result = LookupResult.transient(f"{type(exc).__name__}: {exc}")

            if result.outcome is not LookupOutcome.RATE_LIMITED:
                self._limiter.reset_backoff()
                return result

            consecutive += 1
            if consecutive >= self.config.throttle_pause_threshold:
                self._limiter.penalize(result.retry_after)
                self._throttled = True
                return None
            self._limiter.penalize(result.retry_after)

    async def _apply(self, record: CardRecord, result: LookupResult) -> None:
        self.job.stats.last_record_id = record.id
        if result.ok:
            await self._store_call(self._store.update_record, record.id, self._to_fields(result.value))
            self._invalidate(record_cache_key(record.id))
            self._note(record.id, added=1)
            return
        level = logging.INFO if result.outcome is LookupOutcome.NOT_FOUND else logging.WARNING
        logger.log(
            level,
            "Record not enriched",
            extra={
                "job_id": self.job.job_id,
                "record_id": record.id,
                "outcome": result.outcome.value,
                "detail": result.detail,
            },
        )
        self._note(record.id, errored=1)


class IngestionWorker(BatchWorker):
    """Imports input rows, resolving set labels against the reference set.

    The cursor is the number of consumed input rows. Unresolved labels and
    duplicates (same set and card number) count as skipped; rows without a
    card number or name count as errored.
    """

    def __init__(self, job: Job, *, source: CsvInputSource, **kwargs: Any) -> None:
        super().__init__(job, **kwargs)
        self._source = source
        self.resolver: Optional[NameResolver] = None

    async def _run_batches(self) -> WorkerOutcome:
        config = self.config
        stats = self.job.stats
        entities = await self._store_call(self._store.list_reference_entities)
        self.resolver = NameResolver(entities, tally=self.job.unresolved)
        logger.info(
            "Reference set loaded",
            extra={"job_id": self.job.job_id, "reference_entities": len(self.resolver)},
        )

        rows = self._source.rows(start=self._checkpoint.cursor)
        with contextlib.closing(rows):
            while True:
                if self._control.stop_requested:
                    return self._stopped()
                remaining = config.max_items - stats.processed
                if remaining <= 0:
                    return WorkerOutcome(JobStatus.COMPLETED)

                batch = list(itertools.islice(rows, min(config.batch_size, remaining)))
                if not batch:
                    return WorkerOutcome(JobStatus.COMPLETED)

                for row in batch:
                    await self._ingest_row(row)
                    if await self._control.sleep(config.item_delay_seconds):
                        break

                await self._flush()

                if self._control.stop_requested:
                    return self._stopped()
                if await self._control.sleep(config.batch_delay_seconds):
                    return self._stopped()

    async def _ingest_row(self, row) -> None:
        cursor = row.offset + 1
        set_id = self.resolver.resolve(row.label)
        if set_id is None:
            logger.debug(
                "Unresolved set label",
                extra={"job_id": self.job.job_id, "label": row.label, "row": row.offset},
            )
            self._note(cursor, skipped=1)
            return
        if not row.card_number or not row.name:
            logger.warning(
                "Input row missing card number or name",
                extra={"job_id": self.job.job_id, "row": row.offset},
            )
            self._note(cursor, errored=1)
            return

        inserted = await self._store_call(
            self._store.insert_card,
            NewCard(set_id=set_id, card_number=row.card_number, name=row.name),
        )
        if inserted:
            self._invalidate(set_cache_key(set_id))
            self._note(cursor, added=1)
        else:
            self._note(cursor, skipped=1)
