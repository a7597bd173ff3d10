"""
Shared async HTTP plumbing for upstream providers (feeds, radar, forecast).

Error handling:
    Level 1 — Request errors (timeout, DNS, connection refused, redirect loops, bad encoding)
        → Retry with exponential backoff (base · 2^attempt)
    Level 2 — HTTP errors
        → 429 / 5xx: retry (transient)
        → other 4xx: fail immediately
    Level 3 — Exhausted retries
        → UpstreamUnavailableError; the calling cycle decides what to skip
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class UpstreamClient:
    """
    Base class holding a lazily created ``httpx.AsyncClient``.

    Pass ``client`` to share a connection pool or to inject a mock
    transport in tests; an injected client is never closed here.
    """

    service_name = "upstream"

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        verify: bool = True,
        headers: Optional[Dict[str, str]] = None,
    ):
        self._http_client = client
        self._owns_client = client is None
        self.timeout = httpx.Timeout(timeout_s if timeout_s is not None else settings.FETCH_TIMEOUT_S)
        self.max_retries = max_retries if max_retries is not None else settings.FETCH_MAX_RETRIES
        self.backoff_base_s = (
            backoff_base_s if backoff_base_s is not None else settings.FETCH_BACKOFF_BASE_S
        )
        self.verify = verify
        self.headers = headers or {"User-Agent": settings.FEED_USER_AGENT}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify, headers=self.headers,
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        last_error: str = ""
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                client = await self._get_client()
                response = await client.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP {status}"
                if status not in RETRYABLE_STATUS:
                    raise UpstreamUnavailableError(
                        self.service_name, last_error, url=url, status_code=status,
                    ) from e
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < attempts - 1:
                wait_time = self.backoff_base_s * (2 ** attempt)
                logger.warning(
                    "%s request failed (%s), retrying in %.1fs (attempt %d/%d)",
                    self.service_name, last_error, wait_time, attempt + 1, attempts,
                )
                await asyncio.sleep(wait_time)

        raise UpstreamUnavailableError(
            self.service_name, f"{last_error} after {attempts} attempts", url=url,
        )

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._request(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                self.service_name, "response is not valid JSON", url=url,
            ) from e

    async def get_bytes(self, url: str, params: Optional[Dict[str, Any]] = None) -> bytes:
        response = await self._request(url, params)
        return response.content
