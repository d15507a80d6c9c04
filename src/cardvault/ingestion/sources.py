"""Bulk input sources for ingestion jobs."""

from __future__ import annotations

import csv
import itertools
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence

LABEL_COLUMNS = ("set", "set_name", "label")
NUMBER_COLUMNS = ("card_number", "number", "cardnumber", "no")
NAME_COLUMNS = ("name", "card_name", "player")


class InputFormatError(ValueError):
    """Raised when an input file lacks the columns ingestion needs."""


@dataclass(frozen=True)
class InputRow:
    """One input row; ``offset`` is its 0-based position among data rows."""

    offset: int
    label: str
    card_number: str
    name: str


def _pick_column(fieldnames: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    by_lower = {name.strip().lower(): name for name in fieldnames if name}
    for candidate in candidates:
        if candidate in by_lower:
            return by_lower[candidate]
    return None


class CsvInputSource:
    """Reads ingestion rows lazily from a CSV file with a header row.

    Accepted headers (case-insensitive): ``set``/``set_name``/``label`` for
    the set label, ``card_number``/``number`` for the card number, and
    ``name``/``card_name``/``player`` for the display name.
    """

    def __init__(self, path: Path, *, encoding: str = "utf-8-sig") -> None:
        self.path = Path(path)
        self._encoding = encoding

    @property
    def name(self) -> str:
        return self.path.stem

    def columns(self) -> Dict[str, str]:
        """Map logical fields to header names, raising if any is missing."""
        with self.path.open(newline="", encoding=self._encoding) as fp:
            reader = csv.DictReader(fp)
            return self._resolve_columns(reader.fieldnames or [])

    def rows(self, start: int = 0) -> Iterator[InputRow]:
        """Yield rows beginning at data row ``start``."""
        with self.path.open(newline="", encoding=self._encoding) as fp:
            reader = csv.DictReader(fp)
            columns = self._resolve_columns(reader.fieldnames or [])
            for offset, raw in enumerate(itertools.islice(reader, start, None), start):
                yield InputRow(
                    offset=offset,
                    label=(raw.get(columns["label"]) or ""),
                    card_number=(raw.get(columns["card_number"]) or "").strip(),
                    name=(raw.get(columns["name"]) or "").strip(),
                )

    def _resolve_columns(self, fieldnames: Sequence[str]) -> Dict[str, str]:
        columns = {
            "label": _pick_column(fieldnames, LABEL_COLUMNS),
            "card_number": _pick_column(fieldnames, NUMBER_COLUMNS),
            "name": _pick_column(fieldnames, NAME_COLUMNS),
        }
        missing = sorted(field for field, column in columns.items() if column is None)
        if missing:
            raise InputFormatError(f"{self.path.name} is missing columns for: {', '.join(missing)}")
        return columns  # type: ignore[return-value]
