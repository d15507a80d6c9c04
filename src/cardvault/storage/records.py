"""Record types and the record-store contract used by job workers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Protocol

_WHITESPACE = re.compile(r"\s+")

# Image values that are shown to users but mean "no real image yet".
PLACEHOLDER_IMAGES = (
    "/images/image-coming-soon.png",
    "/images/placeholder.png",
)


class MissingField(str, Enum):
    """Enrichable field groups; each one selects records missing it."""

    IMAGE = "image"
    PRICE = "price"

    @property
    def columns(self) -> FrozenSet[str]:
        return ENRICHABLE_COLUMNS[self]


ENRICHABLE_COLUMNS = {
    MissingField.IMAGE: frozenset({"front_image_url"}),
    MissingField.PRICE: frozenset({"estimated_value", "price_updated_at"}),
}


def build_query(*parts: Optional[str]) -> str:
    """Join non-empty parts into one whitespace-collapsed lookup query."""
    joined = " ".join(str(part) for part in parts if part)
    return _WHITESPACE.sub(" ", joined).strip()


@dataclass(frozen=True)
class CardRecord:
    id: int
    set_id: int
    set_name: str
    card_number: str
    name: str
    front_image_url: Optional[str] = None
    estimated_value: Optional[float] = None
    price_updated_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def query_key(self) -> str:
        return build_query(self.set_name, self.name, self.card_number)

    @property
    def has_image(self) -> bool:
        return bool(self.front_image_url) and self.front_image_url not in PLACEHOLDER_IMAGES

    @property
    def has_price(self) -> bool:
        return self.estimated_value is not None


@dataclass(frozen=True)
class ReferenceEntity:
    """Canonical named entity (a card set) used for name resolution."""

    id: int
    name: str


@dataclass(frozen=True)
class NewCard:
    set_id: int
    card_number: str
    name: str


class RecordStore(Protocol):
    """Operations the job engine needs from the primary record store.

    Implementations raise ``StoreUnavailableError`` when the store cannot
    serve a request; any other exception is treated as a bug.
    """

    def fetch_matching(
        self, missing: MissingField, limit: int, after_id: int = 0
    ) -> List[CardRecord]:
        """Records missing ``missing`` with id > ``after_id``, ascending by id."""
        ...

    def update_record(self, record_id: int, fields: Mapping[str, Any]) -> None:
        ...

    def insert_card(self, card: NewCard) -> bool:
        """Insert unless a card with the same set and number exists.

        Returns True when a row was inserted.
        """
        ...

    def list_reference_entities(self) -> List[ReferenceEntity]:
        ...
