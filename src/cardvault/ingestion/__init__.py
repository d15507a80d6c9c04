"""Bulk ingestion helpers."""

from .name_resolver import NameResolver, normalize_name
from .sources import CsvInputSource, InputFormatError, InputRow

__all__ = ["NameResolver", "normalize_name", "CsvInputSource", "InputFormatError", "InputRow"]
