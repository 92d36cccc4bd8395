"""HTTP fetch collaborator and page-level error types."""

from __future__ import annotations

import logging
import random
from typing import Optional, Protocol

import httpx

from dealhunt.config import settings
from dealhunt.ingest.base import FetchResponse

logger = logging.getLogger(__name__)

# Status codes that mean "anti-automation", not "broken"
BLOCKED_STATUS = (401, 403, 429, 503)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
]


class BlockedPageError(RuntimeError):
    """Raised when a fetched page is an anti-automation response."""
    pass


class TransportError(RuntimeError):
    """Raised when a page could not be fetched at all."""
    pass


class Fetcher(Protocol):
    async def fetch(self, url: str, headers: Optional[dict[str, str]] = None) -> FetchResponse:
        ...


def default_headers(referer: Optional[str] = None) -> dict[str, str]:
    """Get browser-like headers with a rotated User-Agent."""
    headers = {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept": "text/html, application/xhtml+xml, application/xml; q=0.9, */*; q=0.8",
        "Accept-Language": "en-IN, en; q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }
    if referer:
        headers["Referer"] = referer
    return headers


def classify_status(response: FetchResponse) -> None:
    """
    Raise for fetch responses that cannot carry a result page.

    Raises:
        BlockedPageError: 401/403/429/503
        TransportError: any other non-2xx status
    """
    status = response.status
    if status in BLOCKED_STATUS:
        raise BlockedPageError(f"HTTP {status} for {response.url}")
    if not 200 <= status < 300:
        raise TransportError(f"HTTP {status} for {response.url}")


class HttpFetcher:
    """Single-attempt page fetcher over a shared httpx.AsyncClient.

    Retries belong to the page scanner; this class only turns transport
    exceptions into TransportError and hands back status and body.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        timeout = timeout_seconds or settings.request_timeout_seconds
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            follow_redirects=True,
        )
        self._owns_client = client is None

    async def fetch(self, url: str, headers: Optional[dict[str, str]] = None) -> FetchResponse:
        hdrs = default_headers()
        if headers:
            hdrs.update(headers)

        try:
            resp = await self._client.get(url, headers=hdrs)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__} fetching {url}: {e}") from e

        logger.debug(f"Fetched {url}: {resp.status_code} ({len(resp.text)} chars)")
        return FetchResponse(status=resp.status_code, body=resp.text, url=str(resp.url))

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
