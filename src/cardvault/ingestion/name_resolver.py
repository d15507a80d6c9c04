"""Resolution of free-text set labels against the canonical set list."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from ..storage.records import RecordStore, ReferenceEntity

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

BLANK_LABEL = "<blank>"


def normalize_name(raw: str) -> str:
    """Lower-case, trim and collapse internal whitespace runs to one space."""
    return _WHITESPACE.sub(" ", raw.strip()).lower()


class NameResolver:
    """Exact matcher over normalized reference names.

    The reference set is indexed once at construction and never refreshed,
    so one ingestion run sees a stable mapping. When two reference entities
    normalize to the same name the lowest id wins.

    Labels that do not resolve are tallied exactly as they appeared in the
    input, so the report shows the text an operator has to fix. Blank labels
    are tallied as ``<blank>``.
    """

    def __init__(
        self,
        entities: Iterable[ReferenceEntity],
        *,
        tally: Optional[Counter] = None,
    ) -> None:
        self._index: Dict[str, int] = {}
        for entity in sorted(entities, key=lambda e: e.id):
            key = normalize_name(entity.name)
            existing = self._index.setdefault(key, entity.id)
            if existing != entity.id:
                logger.warning(
                    "Duplicate reference name ignored",
                    extra={"reference_name": key, "kept_id": existing, "ignored_id": entity.id},
                )
        self._unresolved: Counter = tally if tally is not None else Counter()

    @classmethod
    def from_store(cls, store: RecordStore, *, tally: Optional[Counter] = None) -> "NameResolver":
        return cls(store.list_reference_entities(), tally=tally)

    def lookup(self, raw_label: str) -> Optional[int]:
        """Resolve without recording a miss."""
        return self._index.get(normalize_name(raw_label))

    def resolve(self, raw_label: str) -> Optional[int]:
        """Resolve a label to a reference id, tallying it when unknown."""
        normalized = normalize_name(raw_label)
        entity_id = self._index.get(normalized)
        if entity_id is None:
            self._unresolved[raw_label if normalized else BLANK_LABEL] += 1
        return entity_id

    def top_unresolved(self, limit: int = 10) -> List[Tuple[str, int]]:
        """Most frequent unresolved labels, ties broken alphabetically."""
        return top_unresolved(self._unresolved, limit)

    @property
    def unresolved_total(self) -> int:
        return sum(self._unresolved.values())

    def __len__(self) -> int:
        return len(self._index)


def top_unresolved(tally: Counter, limit: int = 10) -> List[Tuple[str, int]]:
    ranked = sorted(tally.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:limit] if limit > 0 else ranked
