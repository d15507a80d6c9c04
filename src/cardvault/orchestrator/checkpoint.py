"""Durable per-lineage progress for job workers.

Checkpoints live in their own SQLite file (WAL mode). Each save is one
transaction, so after a crash a lineage reads either its previous or its
new checkpoint, never a mix. A save that would move a cursor backwards is
rejected.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .exceptions import CheckpointRegressionError, StoreUnavailableError
from .models import Checkpoint, JobStatus

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    job_key TEXT PRIMARY KEY,
    cursor INTEGER NOT NULL DEFAULT 0,
    added INTEGER NOT NULL DEFAULT 0,
    skipped INTEGER NOT NULL DEFAULT 0,
    errored INTEGER NOT NULL DEFAULT 0,
    status TEXT,
    spec_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS checkpoint_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_key TEXT NOT NULL,
    cursor INTEGER NOT NULL,
    added INTEGER NOT NULL,
    skipped INTEGER NOT NULL,
    errored INTEGER NOT NULL,
    status TEXT,
    archived_at TEXT NOT NULL
);
"""

_COLUMNS = "cursor, added, skipped, errored, status, spec_json, updated_at"


def _row_to_checkpoint(row: tuple) -> Checkpoint:
    return Checkpoint(
        cursor=row[0],
        added=row[1],
        skipped=row[2],
        errored=row[3],
        status=row[4],
        spec_json=row[5],
        updated_at=datetime.fromisoformat(row[6]) if row[6] else None,
    )


class CheckpointStore:
    """SQLite-backed checkpoint store keyed by job lineage."""

    def __init__(self, path: Union[Path, str]) -> None:
        self._path = Path(path)
        if str(path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._lock = threading.Lock()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.OperationalError as exc:
                logger.warning(
                    "Checkpoint store operation failed",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise StoreUnavailableError(f"checkpoint {operation} failed: {exc}") from exc

    def load(self, job_key: str) -> Checkpoint:
        """Return the lineage checkpoint, or a zero checkpoint if none exists."""
        with self._guard("load"):
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM checkpoints WHERE job_key = ?", (job_key,)
            ).fetchone()
        return _row_to_checkpoint(row) if row else Checkpoint()

    def save(self, job_key: str, checkpoint: Checkpoint) -> Checkpoint:
        """Persist ``checkpoint`` atomically.

        Raises:
            CheckpointRegressionError: If the stored cursor is ahead
        """
        now = datetime.utcnow().isoformat()
        with self._guard("save"):
            with self._conn:
                row = self._conn.execute(
                    "SELECT cursor FROM checkpoints WHERE job_key = ?", (job_key,)
                ).fetchone()
                if row is not None and checkpoint.cursor < row[0]:
                    raise CheckpointRegressionError(job_key, row[0], checkpoint.cursor)
                self._conn.execute(
                    """
                    INSERT INTO checkpoints(job_key, cursor, added, skipped, errored, status, spec_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(job_key) DO UPDATE SET
                        cursor = excluded.cursor,
                        added = excluded.added,
                        skipped = excluded.skipped,
                        errored = excluded.errored,
                        status = excluded.status,
                        spec_json = COALESCE(excluded.spec_json, checkpoints.spec_json),
                        updated_at = excluded.updated_at
                    """,
                    (
                        job_key,
                        checkpoint.cursor,
                        checkpoint.added,
                        checkpoint.skipped,
                        checkpoint.errored,
                        checkpoint.status,
                        checkpoint.spec_json,
                        now,
                        now,
                    ),
                )
        logger.debug(
            "Checkpoint saved",
            extra={"job_key": job_key, "cursor": checkpoint.cursor},
        )
        return Checkpoint(
            cursor=checkpoint.cursor,
            added=checkpoint.added,
            skipped=checkpoint.skipped,
            errored=checkpoint.errored,
            status=checkpoint.status,
            spec_json=checkpoint.spec_json,
            updated_at=datetime.fromisoformat(now),
        )

    def mark_status(
        self,
        job_key: str,
        status: JobStatus,
        *,
        spec_json: Optional[str] = None,
    ) -> None:
        """Record the lineage status without touching cursor or counters."""
        now = datetime.utcnow().isoformat()
        with self._guard("mark_status"):
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO checkpoints(job_key, status, spec_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(job_key) DO UPDATE SET
                        status = excluded.status,
                        spec_json = COALESCE(excluded.spec_json, checkpoints.spec_json),
                        updated_at = excluded.updated_at
                    """,
                    (job_key, status.value, spec_json, now, now),
                )

    def reset(self, job_key: str) -> bool:
        """Archive the lineage checkpoint to history and start it over.

        Returns:
            True if a checkpoint existed
        """
        now = datetime.utcnow().isoformat()
        with self._guard("reset"):
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO checkpoint_history(job_key, cursor, added, skipped, errored, status, archived_at)
                    SELECT job_key, cursor, added, skipped, errored, status, ? FROM checkpoints WHERE job_key = ?
                    """,
                    (now, job_key),
                )
                cur = self._conn.execute("DELETE FROM checkpoints WHERE job_key = ?", (job_key,))
        existed = cur.rowcount > 0
        if existed:
            logger.info("Checkpoint lineage reset", extra={"job_key": job_key})
        return existed

    def list_checkpoints(self) -> Dict[str, Checkpoint]:
        with self._guard("list"):
            rows = self._conn.execute(
                f"SELECT job_key, {_COLUMNS} FROM checkpoints ORDER BY job_key"
            ).fetchall()
        return {row[0]: _row_to_checkpoint(row[1:]) for row in rows}

    def history(self, job_key: str) -> List[Checkpoint]:
        """Archived checkpoints of earlier lineages, oldest first."""
        with self._guard("history"):
            rows = self._conn.execute(
                """
                SELECT cursor, added, skipped, errored, status, NULL, archived_at
                FROM checkpoint_history WHERE job_key = ? ORDER BY id
                """,
                (job_key,),
            ).fetchall()
        return [_row_to_checkpoint(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
