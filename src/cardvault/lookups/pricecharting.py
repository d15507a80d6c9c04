"""PriceCharting price lookup client.

API Documentation: https://www.pricecharting.com/api-documentation

Prices come back in pennies. The first non-zero of the loose, complete and
new prices is used as the card's estimated value.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .base import HttpLookupClient, LookupResult

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("loose-price", "cib-price", "new-price")


def extract_price(product: Dict[str, Any]) -> Optional[float]:
    """Return the first non-zero price of ``product`` in dollars."""
    for field_name in PRICE_FIELDS:
        raw = product.get(field_name)
        if raw in (None, ""):
            continue
        try:
            pennies = int(raw)
        except (TypeError, ValueError):
            continue
        if pennies > 0:
            return round(pennies / 100.0, 2)
    return None


class PriceChartingClient(HttpLookupClient):
    """Looks up an estimated market value for a card query."""

    name = "pricecharting"
    BASE_URL = "https://www.pricecharting.com"

    def __init__(
        self,
        api_token: Optional[str],
        *,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, transport=transport)
        self._token = api_token

    async def lookup(self, query: str) -> LookupResult:
        params: Dict[str, Any] = {"q": query}
        if self._token:
            params["t"] = self._token
        data = await self._get_json("/api/products", params)
        if isinstance(data, LookupResult):
            return data

        if data.get("status") not in (None, "success"):
            return LookupResult.not_found(str(data.get("error-message") or "lookup failed"))

        for product in data.get("products") or []:
            price = extract_price(product)
            if price is not None:
                logger.debug(
                    "Price found",
                    extra={"query": query, "product_id": product.get("id"), "price": price},
                )
                return LookupResult.found(price)
        return LookupResult.not_found("no priced product")
