"""Builds a fully wired ``JobScheduler`` from an ``EngineConfig``."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..lookups.base import LookupService
from ..lookups.images import ImageSearchClient
from ..lookups.pricecharting import PriceChartingClient
from ..storage.cache import TTLCache
from ..storage.records import RecordStore
from ..storage.sqlite_store import SqliteCardStore
from .audit import AuditLogger
from .checkpoint import CheckpointStore
from .config import EngineConfig, SecretsManager
from .metrics import TelemetryRecorder
from .models import JobKind
from .rate_limiter import RateLimiter
from .scheduler import JobScheduler

logger = logging.getLogger(__name__)


def build_rate_limiters(config: EngineConfig) -> Dict[JobKind, RateLimiter]:
    return {
        kind: RateLimiter(
            name=kind.value,
            min_interval_seconds=limits.min_interval_ms / 1000.0,
            max_calls_per_window=limits.max_calls_per_window,
            window_seconds=limits.window_seconds,
            backoff_base_seconds=limits.backoff_base_seconds,
            backoff_max_seconds=limits.backoff_max_seconds,
        )
        for kind, limits in config.rate_limits.items()
    }


def build_lookup_services(
    config: EngineConfig, secrets: SecretsManager
) -> Dict[JobKind, LookupService]:
    """Create lookup clients for enabled enrichment kinds that have a token."""
    services: Dict[JobKind, LookupService] = {}
    enabled = set(config.scheduler.enabled_kinds)

    if JobKind.PRICE_ENRICHMENT in enabled:
        endpoint = config.lookups.price
        token = secrets.get_secret(endpoint.secret_key)
        if token:
            services[JobKind.PRICE_ENRICHMENT] = PriceChartingClient(
                token, base_url=endpoint.base_url, timeout=endpoint.timeout_seconds
            )
        else:
            logger.warning(
                "Price lookups disabled: secret not set",
                extra={"secret_key": endpoint.secret_key},
            )

    if JobKind.IMAGE_ENRICHMENT in enabled:
        endpoint = config.lookups.image
        token = secrets.get_secret(endpoint.secret_key)
        if token:
            services[JobKind.IMAGE_ENRICHMENT] = ImageSearchClient(
                token, base_url=endpoint.base_url, timeout=endpoint.timeout_seconds
            )
        else:
            logger.warning(
                "Image lookups disabled: secret not set",
                extra={"secret_key": endpoint.secret_key},
            )
    return services


def build_job_scheduler(
    config: EngineConfig,
    *,
    store: Optional[RecordStore] = None,
    lookups: Optional[Dict[JobKind, LookupService]] = None,
    secrets: Optional[SecretsManager] = None,
    cache: Optional[TTLCache] = None,
) -> JobScheduler:
    """Wire stores, lookups, limiters, telemetry and audit into a scheduler.

    Configured schedules are registered but only fire once the scheduler
    is opened.
    """
    workspace = config.workspace_path
    workspace.mkdir(parents=True, exist_ok=True)

    if lookups is None:
        lookups = build_lookup_services(config, secrets or SecretsManager())

    scheduler = JobScheduler(
        store=store or SqliteCardStore(config.store.database_path),
        checkpoints=CheckpointStore(config.store.checkpoint_path),
        lookups=lookups,
        rate_limiters=build_rate_limiters(config),
        cache=cache or TTLCache(config.cache.default_ttl_seconds),
        max_concurrent_jobs=config.scheduler.max_concurrent_jobs,
        max_queued_jobs=config.scheduler.max_queued_jobs,
        enabled_kinds=config.scheduler.enabled_kinds,
        store_retry=config.store_retry,
        telemetry=TelemetryRecorder(config.telemetry_dir) if config.telemetry.enabled else None,
        audit_logger=AuditLogger(config.audit_dir) if config.audit.enabled else None,
        workspace_dir=workspace,
        auto_resume_interrupted=config.scheduler.auto_resume_interrupted,
        cache_sweep_interval_seconds=config.cache.sweep_interval_seconds or None,
    )

    for schedule in config.schedules:
        if not schedule.enabled:
            continue
        scheduler.add_schedule(
            schedule.kind,
            schedule.cron,
            config=schedule.job or config.job_defaults,
            input_path=schedule.input_path,
            source_name=schedule.source_name,
        )
    return scheduler
