"""Test doubles shared by the job engine tests."""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from cardvault.lookups.base import LookupResult
from cardvault.orchestrator.checkpoint import CheckpointStore
from cardvault.orchestrator.exceptions import StoreUnavailableError
from cardvault.orchestrator.models import Checkpoint, JobConfig
from cardvault.storage.records import CardRecord, MissingField
from cardvault.storage.sqlite_store import SqliteCardStore


class FakeLookup:
    """Scripted lookup service.

    Results in ``script`` are returned (or raised, for exceptions) in
    order; after that ``default`` is returned for every call.
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        script: Iterable[Any] = (),
        default: Optional[LookupResult] = None,
        gate: Optional[asyncio.Event] = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.script: List[Any] = list(script)
        self.default = default or LookupResult.found("https://images.example/card.jpg")
        self.gate = gate
        self.delay = delay
        self.calls: List[str] = []

    async def lookup(self, query: str) -> LookupResult:
        self.calls.append(query)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script:
            result = self.script.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return self.default


class RecordingCardStore(SqliteCardStore):
    """SQLite card store that records calls and can fail fetches on demand."""

    def __init__(self, path: Path, *, fail_fetches: int = 0) -> None:
        super().__init__(path)
        self.fail_fetches = fail_fetches
        self.fetch_failures = 0
        self.fetch_limits: List[int] = []
        self.fetch_sizes: List[int] = []
        self.updates: List[int] = []

    def fetch_matching(
        self, missing: MissingField, limit: int, after_id: int = 0
    ) -> List[CardRecord]:
        if self.fail_fetches > 0:
            self.fail_fetches -= 1
            self.fetch_failures += 1
            raise StoreUnavailableError("fetch_matching failed: database is locked")
        records = super().fetch_matching(missing, limit, after_id)
        self.fetch_limits.append(limit)
        self.fetch_sizes.append(len(records))
        return records

    def update_record(self, record_id: int, fields: Mapping[str, Any]) -> None:
        self.updates.append(record_id)
        super().update_record(record_id, fields)


class RecordingCheckpointStore(CheckpointStore):
    """Checkpoint store that remembers every saved cursor per lineage.

    ``fail_loads`` makes the next N loads raise as if the database were locked.
    """

    def __init__(self, path: Path, *, fail_loads: int = 0) -> None:
        super().__init__(path)
        self.saved: dict = {}
        self.fail_loads = fail_loads
        self.load_failures = 0

    def load(self, job_key: str) -> Checkpoint:
        if self.fail_loads > 0:
            self.fail_loads -= 1
            self.load_failures += 1
            raise StoreUnavailableError("load failed: database is locked")
        return super().load(job_key)

    def save(self, job_key: str, checkpoint: Checkpoint) -> Checkpoint:
        stored = super().save(job_key, checkpoint)
        self.saved.setdefault(job_key, []).append(stored.cursor)
        return stored


def fast_config(**overrides: Any) -> JobConfig:
    """Job config without pacing delays."""
    values = {"item_delay_ms": 0, "batch_delay_ms": 0}
    values.update(overrides)
    return JobConfig(**values)


def seed_cards(
    store: SqliteCardStore,
    count: int,
    *,
    set_name: str = "Base Set",
    front_image_url: Optional[str] = None,
    estimated_value: Optional[float] = None,
) -> List[int]:
    set_id = store.add_card_set(set_name)
    return [
        store.add_card(
            set_id,
            f"{number:03d}",
            f"Card {number}",
            front_image_url=front_image_url,
            estimated_value=estimated_value,
        )
        for number in range(1, count + 1)
    ]


def write_csv(
    path: Path,
    rows: Iterable[Sequence[str]],
    header: Sequence[str] = ("set", "card_number", "name"),
) -> Path:
    with path.open("w", newline="", encoding="utf-8") as fp:
        writer = csv.writer(fp)
        writer.writerow(header)
        writer.writerows(rows)
    return path


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
