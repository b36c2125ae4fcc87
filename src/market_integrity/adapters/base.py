"""Source adapter abstract base class and the shared HTTP plumbing."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx

from market_integrity.models import MarketCategory, Quote


class FetchFailure(Exception):
    """An adapter could not produce a usable quote.

    Raised for transport errors, non-2xx responses, malformed payloads and
    non-finite values. Never retried inside the adapter.
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class SourceAdapter(ABC):
    """Base class for all external data sources.

    Subclasses set the class-level attributes and implement fetch().
    One adapter serves exactly one market category.
    """

    name: str
    source: str  # display name carried on quotes
    category: MarketCategory
    confidence: float
    base_url: str
    enabled_by_default: bool = True

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or self.base_url).rstrip("/")
        self.api_key = api_key
        self._timeout_s = timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @abstractmethod
    async def fetch(self, market_id: str) -> Quote:
        """Fetch and normalize the current value for a market identifier."""
        ...

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # --- helpers for subclasses ---

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET base_url + path and decode JSON, mapping every failure to FetchFailure."""
        http = await self._get_http()
        try:
            resp = await http.get(f"{self.base_url}{path}", params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise self._fail(f"upstream returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise self._fail(f"upstream unreachable ({type(exc).__name__})") from exc
        except ValueError as exc:
            raise self._fail("response is not valid JSON") from exc

    def _fail(self, message: str) -> FetchFailure:
        return FetchFailure(self.source, message)

    def _numeric(self, raw: Any, what: str = "value") -> float:
        """Parse a finite float out of a payload field."""
        if isinstance(raw, bool) or raw is None:
            raise self._fail(f"invalid {what}")
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise self._fail(f"invalid {what}") from exc
        if not math.isfinite(value):
            raise self._fail(f"non-finite {what}")
        return value

    def _quote(self, market_id: str, value: float | str) -> Quote:
        return Quote(
            market_id=market_id,
            value=value,
            source=self.source,
            confidence=self.confidence,
            observed_at=datetime.now(timezone.utc),
            healthy=True,
        )
