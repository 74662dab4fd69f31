"""Shared HTTP access to uplinks and archive origins.

One ``httpx.AsyncClient`` is built at startup and reused by every component.
``Fetcher`` bounds each request with an overall deadline on top of the
client's per-phase timeouts, and maps every outcome onto two errors:
``UpstreamNotFound`` for a 404 and ``UpstreamUnavailable`` for everything
else that is not a 2xx. Callers translate those into their own codes.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from elmirror.config import FetcherSettings
from elmirror.errors import UpstreamNotFound, UpstreamUnavailable

if TYPE_CHECKING:
    from elmirror.models.catalog import ReleaseRef

log = structlog.get_logger()


def build_http_client(settings: FetcherSettings | None = None) -> httpx.AsyncClient:
    """Build the shared client. Origins redirect archive downloads, so follow them."""
    settings = settings or FetcherSettings()
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=settings.max_redirects,
        timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout),
        headers={"User-Agent": settings.user_agent},
    )


def origin_archive_url(template: str, ref: ReleaseRef) -> str:
    return template.format(author=ref.author, project=ref.project, version=ref.version)


class Fetcher:
    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings | None = None) -> None:
        self._client = client
        self._settings = settings or FetcherSettings()

    async def get(self, url: str) -> httpx.Response:
        try:
            async with asyncio.timeout(self._settings.deadline_seconds):
                response = await self._client.get(url)
        except TimeoutError as exc:
            raise UpstreamUnavailable(f"Timed out fetching {url}") from exc
        except httpx.TooManyRedirects as exc:
            raise UpstreamUnavailable(f"Too many redirects fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Network error fetching {url}: {exc}") from exc

        if response.status_code == 404:
            raise UpstreamNotFound(f"Not found: {url}")
        if not response.is_success:
            raise UpstreamUnavailable(f"HTTP {response.status_code} fetching {url}")

        log.debug("upstream_fetched", url=url, bytes=len(response.content))
        return response

    async def get_bytes(self, url: str) -> bytes:
        response = await self.get(url)
        return response.content

    async def get_text(self, url: str) -> str:
        response = await self.get(url)
        return response.text

    async def get_json(self, url: str) -> Any:
        response = await self.get(url)
        try:
            return json.loads(response.content)
        except ValueError as exc:
            raise UpstreamUnavailable(f"Invalid JSON from {url}: {exc}") from exc
