"""Lookup result contract shared by every external lookup client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

import httpx

logger = logging.getLogger(__name__)


class LookupOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class LookupResult:
    outcome: LookupOutcome
    value: Any = None
    detail: Optional[str] = None
    retry_after: Optional[float] = None

    @classmethod
    def found(cls, value: Any) -> "LookupResult":
        return cls(LookupOutcome.FOUND, value=value)

    @classmethod
    def not_found(cls, detail: Optional[str] = None) -> "LookupResult":
        return cls(LookupOutcome.NOT_FOUND, detail=detail)

    @classmethod
    def rate_limited(cls, retry_after: Optional[float] = None) -> "LookupResult":
        return cls(LookupOutcome.RATE_LIMITED, retry_after=retry_after, detail="rate limited")

    @classmethod
    def transient(cls, detail: str) -> "LookupResult":
        return cls(LookupOutcome.TRANSIENT_ERROR, detail=detail)

    @property
    def ok(self) -> bool:
        return self.outcome is LookupOutcome.FOUND


class LookupService(Protocol):
    """External service resolving a query key to an enrichment value."""

    name: str

    async def lookup(self, query: str) -> LookupResult:
        ...


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_response(response: httpx.Response) -> Optional[LookupResult]:
    """Map non-success HTTP statuses to a lookup result.

    Returns None for 2xx responses, which the caller parses itself.
    """
    status = response.status_code
    if status == 429:
        return LookupResult.rate_limited(parse_retry_after(response.headers.get("Retry-After")))
    if status == 404:
        return LookupResult.not_found("HTTP 404")
    if status >= 400:
        return LookupResult.transient(f"HTTP {status}")
    return None


class HttpLookupClient:
    """Base for lookup clients that issue one GET per query.

    Subclasses implement ``lookup`` using ``_get_json``. A transport can be
    injected (``httpx.MockTransport`` in tests).
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json", **(headers or {})},
            transport=transport,
        )

    async def _get_json(
        self, path: str, params: Dict[str, Any]
    ) -> Union[Dict[str, Any], LookupResult]:
        """GET ``path`` and return the decoded body or a failure result."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.TransportError as exc:
            logger.warning(
                "Lookup request failed",
                extra={"lookup_service": self.name, "error": str(exc)},
            )
            return LookupResult.transient(f"{type(exc).__name__}: {exc}")

        failure = classify_response(response)
        if failure is not None:
            if failure.outcome is not LookupOutcome.NOT_FOUND:
                logger.warning(
                    "Lookup service returned an error",
                    extra={"lookup_service": self.name, "status_code": response.status_code},
                )
            return failure

        try:
            data = response.json()
        except ValueError:
            return LookupResult.transient("invalid JSON in response")
        if not isinstance(data, dict):
            return LookupResult.transient("unexpected response shape")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpLookupClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
