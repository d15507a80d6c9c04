"""SQLite-backed card store used for local runs and tests."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from ..orchestrator.exceptions import StoreUnavailableError
from .records import (
    ENRICHABLE_COLUMNS,
    PLACEHOLDER_IMAGES,
    CardRecord,
    MissingField,
    NewCard,
    ReferenceEntity,
)

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS card_sets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    year INTEGER,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    set_id INTEGER NOT NULL REFERENCES card_sets(id),
    card_number TEXT NOT NULL,
    name TEXT NOT NULL,
    front_image_url TEXT,
    estimated_value REAL,
    price_updated_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_cards_set_number ON cards(set_id, card_number);
"""

_MISSING_PREDICATES = {
    MissingField.IMAGE: (
        "(c.front_image_url IS NULL OR c.front_image_url IN ('', ?, ?))",
        PLACEHOLDER_IMAGES,
    ),
    MissingField.PRICE: ("c.estimated_value IS NULL", ()),
}

_UPDATABLE_COLUMNS = frozenset().union(*ENRICHABLE_COLUMNS.values())

_SELECT_CARDS = """
SELECT c.id, c.set_id, s.name, c.card_number, c.name, c.front_image_url,
       c.estimated_value, c.price_updated_at, c.updated_at
FROM cards c JOIN card_sets s ON s.id = c.set_id
"""


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _to_db(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class SqliteCardStore:
    """Card store over a single SQLite file in WAL mode."""

    def __init__(self, path: Union[Path, str]) -> None:
        self._path = Path(path)
        if str(path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.OperationalError as exc:
                logger.warning(
                    "Card store operation failed",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise StoreUnavailableError(f"{operation} failed: {exc}") from exc

    def fetch_matching(
        self, missing: MissingField, limit: int, after_id: int = 0
    ) -> List[CardRecord]:
        predicate, params = _MISSING_PREDICATES[MissingField(missing)]
        with self._guard("fetch_matching"):
            rows = self._conn.execute(
                f"{_SELECT_CARDS} WHERE {predicate} AND c.id > ? ORDER BY c.id ASC LIMIT ?",
                (*params, after_id, limit),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def update_record(self, record_id: int, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        if not fields:
            return
        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [_to_db(fields[column]) for column in columns]
        with self._guard("update_record"):
            with self._conn:
                self._conn.execute(
                    f"UPDATE cards SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values, datetime.utcnow().isoformat(), record_id),
                )

    def insert_card(self, card: NewCard) -> bool:
        now = datetime.utcnow().isoformat()
        with self._guard("insert_card"):
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO cards(set_id, card_number, name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(set_id, card_number) DO NOTHING
                    """,
                    (card.set_id, card.card_number, card.name, now, now),
                )
        return cur.rowcount == 1

    def list_reference_entities(self) -> List[ReferenceEntity]:
        with self._guard("list_reference_entities"):
            rows = self._conn.execute("SELECT id, name FROM card_sets ORDER BY id").fetchall()
        return [ReferenceEntity(id=row[0], name=row[1]) for row in rows]

    def add_card_set(self, name: str, *, set_id: Optional[int] = None, year: Optional[int] = None) -> int:
        with self._guard("add_card_set"):
            with self._conn:
                cur = self._conn.execute(
                    "INSERT INTO card_sets(id, name, year, created_at) VALUES (?, ?, ?, ?)",
                    (set_id, name, year, datetime.utcnow().isoformat()),
                )
        return int(cur.lastrowid)

    def add_card(
        self,
        set_id: int,
        card_number: str,
        name: str,
        *,
        front_image_url: Optional[str] = None,
        estimated_value: Optional[float] = None,
    ) -> int:
        now = datetime.utcnow().isoformat()
        with self._guard("add_card"):
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO cards(set_id, card_number, name, front_image_url, estimated_value, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (set_id, card_number, name, front_image_url, estimated_value, now, now),
                )
        return int(cur.lastrowid)

    def get_record(self, record_id: int) -> Optional[CardRecord]:
        with self._guard("get_record"):
            row = self._conn.execute(f"{_SELECT_CARDS} WHERE c.id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def count_cards(self, set_id: Optional[int] = None) -> int:
        with self._guard("count_cards"):
            if set_id is None:
                row = self._conn.execute("SELECT COUNT(*) FROM cards").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM cards WHERE set_id = ?", (set_id,)
                ).fetchone()
        return int(row[0])

    def count_missing(self, missing: MissingField) -> int:
        predicate, params = _MISSING_PREDICATES[MissingField(missing)]
        with self._guard("count_missing"):
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM cards c WHERE {predicate}", params
            ).fetchone()
        return int(row[0])

    def stats(self) -> Dict[str, int]:
        with self._guard("stats"):
            sets = self._conn.execute("SELECT COUNT(*) FROM card_sets").fetchone()[0]
        return {
            "sets": int(sets),
            "cards": self.count_cards(),
            "missing_image": self.count_missing(MissingField.IMAGE),
            "missing_price": self.count_missing(MissingField.PRICE),
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_record(row: tuple) -> CardRecord:
        return CardRecord(
            id=row[0],
            set_id=row[1],
            set_name=row[2],
            card_number=row[3],
            name=row[4],
            front_image_url=row[5],
            estimated_value=row[6],
            price_updated_at=_parse_ts(row[7]),
            updated_at=_parse_ts(row[8]),
        )
