"""Content store: release archives cached on disk by identity.

An archive is fetched from its origin once, written under
``<artifacts>/<author>/<project>/<version>.zip`` and from then on served
verbatim from disk. The content hash is SHA-1 over the exact stored bytes,
so it can be recomputed from the cache at any time.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import tempfile
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

import structlog

from elmirror.errors import (
    ArtifactFetchFailed,
    ArtifactNotFound,
    UpstreamNotFound,
    UpstreamUnavailable,
)
from elmirror.fetcher import origin_archive_url

if TYPE_CHECKING:
    from elmirror.fetcher import Fetcher
    from elmirror.models.catalog import ReleaseRef

log = structlog.get_logger()


class StoredArchive(NamedTuple):
    data: bytes
    content_hash: str
    path: Path
    cached: bool


def content_hash(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def _write_atomic(path: Path, data: bytes) -> None:
    # A crash mid-write must not leave a truncated file that later reads
    # would trust as a cache hit.
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class ContentStore:
    def __init__(self, fetcher: Fetcher, root: str | Path, origin_url_template: str) -> None:
        self._fetcher = fetcher
        self._root = Path(root).expanduser()
        self._origin_url_template = origin_url_template
        # Entries disappear once no fetch holds a reference to the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def path_for(self, ref: ReleaseRef) -> Path:
        return self._root / ref.author / ref.project / f"{ref.version}.zip"

    def origin_url(self, ref: ReleaseRef) -> str:
        return origin_archive_url(self._origin_url_template, ref)

    async def fetch(self, ref: ReleaseRef) -> StoredArchive:
        """Return the archive for ``ref``, downloading it on a cache miss."""
        path = self.path_for(ref)
        # Two uplinks can mirror the same package; only one download per identity.
        lock = self._locks.get(str(ref))
        if lock is None:
            lock = self._locks[str(ref)] = asyncio.Lock()
        async with lock:
            if path.exists():
                data = await asyncio.to_thread(path.read_bytes)
                log.debug("archive_cache_hit", ref=str(ref), path=str(path))
                return StoredArchive(data, content_hash(data), path, cached=True)

            url = self.origin_url(ref)
            try:
                data = await self._fetcher.get_bytes(url)
            except UpstreamNotFound as exc:
                raise ArtifactNotFound(f"Origin has no archive for {ref}: {url}") from exc
            except UpstreamUnavailable as exc:
                raise ArtifactFetchFailed(
                    f"Could not fetch archive for {ref}: {exc.message}"
                ) from exc

            await asyncio.to_thread(_write_atomic, path, data)
            stored = await asyncio.to_thread(path.read_bytes)
            digest = content_hash(stored)
            log.info("archive_stored", ref=str(ref), bytes=len(stored), hash=digest)
            return StoredArchive(stored, digest, path, cached=False)
