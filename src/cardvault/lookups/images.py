"""Card image lookup against an eBay Browse style item search."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .base import HttpLookupClient, LookupResult

logger = logging.getLogger(__name__)


class ImageSearchClient(HttpLookupClient):
    """Returns the image URL of the best matching listing."""

    name = "image_search"
    BASE_URL = "https://api.ebay.com/buy/browse/v1"

    def __init__(
        self,
        access_token: Optional[str],
        *,
        base_url: str = BASE_URL,
        category_id: Optional[str] = "261328",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        super().__init__(base_url, timeout=timeout, headers=headers, transport=transport)
        self._category_id = category_id

    async def lookup(self, query: str) -> LookupResult:
        params = {"q": query, "limit": 5}
        if self._category_id:
            params["category_ids"] = self._category_id
        data = await self._get_json("/item_summary/search", params)
        if isinstance(data, LookupResult):
            return data

        for item in data.get("itemSummaries") or []:
            image_url = (item.get("image") or {}).get("imageUrl")
            if image_url:
                logger.debug(
                    "Image found",
                    extra={"query": query, "item_id": item.get("itemId")},
                )
                return LookupResult.found(image_url)
        return LookupResult.not_found("no listing with an image")
