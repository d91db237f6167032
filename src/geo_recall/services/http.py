"""Shared best-effort JSON-over-HTTP client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from geo_recall.config import settings

logger = logging.getLogger(__name__)


class JsonService:
    """Lazily creates one ``httpx.AsyncClient`` and resolves every call to a value or ``None``.

    Every request is bounded by ``timeout_seconds`` end to end; failures are
    logged and never raised.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 5.0,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._user_agent = user_agent or settings.user_agent
        self._client = client
        self._owns_client = client is None

    async def _client_get(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True)
            self._owns_client = True
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._user_agent, "Accept": "application/json"}

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any | None:
        client = await self._client_get()
        try:
            response = await asyncio.wait_for(
                client.get(url, params=params, headers=self._headers()),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            return response.json()
        except asyncio.TimeoutError:
            logger.warning("http_timeout", extra={"url": url, "timeout_seconds": self.timeout_seconds})
        except httpx.HTTPStatusError as exc:
            logger.warning("http_status_error", extra={"url": url, "status_code": exc.response.status_code})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("http_request_failed", extra={"url": url, "error": f"{type(exc).__name__}: {exc}"})
        return None

    async def close(self) -> None:
        """Close the underlying client if this service created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
