"""Record store contract, TTL cache and the SQLite card store.

``SqliteCardStore`` lives in ``cardvault.storage.sqlite_store`` and is not
re-exported here, keeping this package importable without the job engine.
"""

from .cache import MISS, TTLCache, record_cache_key, set_cache_key
from .records import CardRecord, MissingField, NewCard, RecordStore, ReferenceEntity

__all__ = [
    "MISS",
    "TTLCache",
    "record_cache_key",
    "set_cache_key",
    "CardRecord",
    "MissingField",
    "NewCard",
    "RecordStore",
    "ReferenceEntity",
]
