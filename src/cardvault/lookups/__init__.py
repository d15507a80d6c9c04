"""External lookup clients used by enrichment jobs."""

from .base import LookupOutcome, LookupResult, LookupService
from .images import ImageSearchClient
from .pricecharting import PriceChartingClient

__all__ = [
    "LookupOutcome",
    "LookupResult",
    "LookupService",
    "ImageSearchClient",
    "PriceChartingClient",
]
