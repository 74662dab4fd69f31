"""Delta fetch: which releases has an uplink published since our cursor?"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import TypeAdapter, ValidationError

from elmirror.errors import DeltaFetchFailed, InvalidReference, MirrorError
from elmirror.models.catalog import ReleaseRef

if TYPE_CHECKING:
    from elmirror.fetcher import Fetcher
    from elmirror.models.catalog import Uplink

log = structlog.get_logger()

_DeltaListing = TypeAdapter(list[str])


def delta_url(base_url: str, cursor: int) -> str:
    return f"{base_url}/all-packages/since/{cursor}"


class DeltaFetcher:
    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    async def fetch(self, uplink: Uplink) -> list[ReleaseRef]:
        """Return releases newer than the uplink's cursor, oldest first.

        Uplinks list newest first. Commits must follow the order events were
        produced, otherwise the cursor could move past an earlier release that
        never committed, so the listing is reversed here.
        """
        url = delta_url(uplink.url, uplink.cursor)
        try:
            payload = await self._fetcher.get_json(url)
        except MirrorError as exc:
            raise DeltaFetchFailed(f"Delta fetch from {uplink.url} failed: {exc.message}") from exc

        try:
            names = _DeltaListing.validate_python(payload)
            refs = [ReleaseRef.parse(name) for name in names]
        except (ValidationError, InvalidReference) as exc:
            raise DeltaFetchFailed(f"Malformed delta listing from {uplink.url}: {exc}") from exc

        refs.reverse()
        log.info("delta_fetched", uplink=uplink.url, cursor=uplink.cursor, count=len(refs))
        return refs
