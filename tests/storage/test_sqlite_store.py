"""Tests for the SQLite card store."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from cardvault.orchestrator.exceptions import StoreUnavailableError
from cardvault.storage.records import PLACEHOLDER_IMAGES, MissingField, NewCard, build_query
from cardvault.storage.sqlite_store import SqliteCardStore


@pytest.fixture
def store(tmp_path: Path):
    card_store = SqliteCardStore(tmp_path / "cards.db")
    yield card_store
    card_store.close()


@pytest.fixture
def base_set(store: SqliteCardStore) -> int:
    return store.add_card_set("Base Set", year=1999)


def test_image_predicate_treats_placeholders_as_missing(store: SqliteCardStore, base_set: int) -> None:
    missing = store.add_card(base_set, "001", "Alakazam")
    empty = store.add_card(base_set, "002", "Blastoise", front_image_url="")
    placeholder = store.add_card(base_set, "003", "Chansey", front_image_url=PLACEHOLDER_IMAGES[0])
    store.add_card(base_set, "004", "Charizard", front_image_url="https://img/4.jpg")

    records = store.fetch_matching(MissingField.IMAGE, limit=10)

    assert [record.id for record in records] == [missing, empty, placeholder]
    assert not any(record.has_image for record in records)
    assert store.count_missing(MissingField.IMAGE) == 3


def test_price_predicate(store: SqliteCardStore, base_set: int) -> None:
    unpriced = store.add_card(base_set, "001", "Alakazam")
    store.add_card(base_set, "002", "Blastoise", estimated_value=120.0)

    records = store.fetch_matching("price", limit=10)

    assert [record.id for record in records] == [unpriced]
    assert not records[0].has_price


def test_fetch_respects_cursor_and_limit(store: SqliteCardStore, base_set: int) -> None:
    ids = [store.add_card(base_set, f"{n:03d}", f"Card {n}") for n in range(1, 6)]

    assert [r.id for r in store.fetch_matching(MissingField.IMAGE, limit=2)] == ids[:2]
    assert [r.id for r in store.fetch_matching(MissingField.IMAGE, limit=2, after_id=ids[1])] == ids[2:4]
    assert store.fetch_matching(MissingField.IMAGE, limit=2, after_id=ids[-1]) == []


def test_record_query_key(store: SqliteCardStore, base_set: int) -> None:
    record_id = store.add_card(base_set, "4", "Charizard  Holo")

    record = store.get_record(record_id)

    assert record.set_name == "Base Set"
    assert record.query_key == "Base Set Charizard Holo 4"
    assert build_query("a", None, "", " b ") == "a b"


def test_update_record(store: SqliteCardStore, base_set: int) -> None:
    record_id = store.add_card(base_set, "001", "Alakazam")
    before = store.get_record(record_id).updated_at
    priced_at = datetime(2024, 5, 1, 8, 30)

    store.update_record(record_id, {"estimated_value": 42.5, "price_updated_at": priced_at})

    record = store.get_record(record_id)
    assert record.estimated_value == 42.5
    assert record.price_updated_at == priced_at
    assert record.updated_at >= before
    assert store.fetch_matching(MissingField.PRICE, limit=5) == []


def test_update_rejects_other_columns(store: SqliteCardStore, base_set: int) -> None:
    record_id = store.add_card(base_set, "001", "Alakazam")

    with pytest.raises(ValueError, match="name"):
        store.update_record(record_id, {"name": "Kadabra"})


def test_insert_card_skips_duplicates(store: SqliteCardStore, base_set: int) -> None:
    other_set = store.add_card_set("Jungle")

    assert store.insert_card(NewCard(base_set, "001", "Alakazam")) is True
    assert store.insert_card(NewCard(base_set, "001", "Alakazam (reprint)")) is False
    assert store.insert_card(NewCard(other_set, "001", "Clefable")) is True
    assert store.count_cards() == 3
    assert store.count_cards(base_set) == 1


def test_reference_entities_and_stats(store: SqliteCardStore, base_set: int) -> None:
    store.add_card_set("Fossil", set_id=10)
    store.add_card(base_set, "001", "Alakazam", estimated_value=5.0)

    entities = store.list_reference_entities()

    assert [(e.id, e.name) for e in entities] == [(base_set, "Base Set"), (10, "Fossil")]
    assert store.stats() == {"sets": 2, "cards": 1, "missing_image": 1, "missing_price": 0}


def test_driver_errors_become_store_unavailable(store: SqliteCardStore, monkeypatch) -> None:
    class LockedConnection:
        def execute(self, *args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        def close(self):
            pass

    monkeypatch.setattr(store, "_conn", LockedConnection())

    with pytest.raises(StoreUnavailableError, match="fetch_matching"):
        store.fetch_matching(MissingField.IMAGE, limit=1)
