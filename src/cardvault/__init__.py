"""Card collection job engine: background enrichment and bulk ingestion."""

__version__ = "0.1.0"
