"""Release metadata: publish time, manifest, readme and docs.

Two sources, chosen by ``sync.metadata_source``:

* ``http``: everything comes from the uplink, fetched concurrently.
* ``archive``: manifest and readme are read from the cached archive; docs and
  the publish time still come from the uplink, archives carry neither.

Any missing or malformed piece fails the whole fetch with
``MetadataIncomplete``. Partial metadata is never returned.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Literal, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from elmirror.errors import MetadataIncomplete, MirrorError
from elmirror.models.upstream import DocsIndex, PackageManifest, ReleaseMetadata, ReleaseTimes

if TYPE_CHECKING:
    from elmirror.archive import ArchiveReader
    from elmirror.fetcher import Fetcher
    from elmirror.models.catalog import ReleaseRef

log = structlog.get_logger()

MetadataSource = Literal["http", "archive"]

_M = TypeVar("_M", bound=BaseModel)


def package_url(base_url: str, ref: ReleaseRef) -> str:
    return f"{base_url}/packages/{ref.author}/{ref.project}"


def _parse(model: type[_M], text: str, what: str, ref: ReleaseRef) -> _M:
    try:
        return model.model_validate(json.loads(text))
    except ValueError as exc:
        raise MetadataIncomplete(f"Malformed {what} for {ref}: {exc}") from exc


class MetadataFetcher:
    def __init__(self, fetcher: Fetcher, source: MetadataSource = "http") -> None:
        self._fetcher = fetcher
        self.source = source

    async def fetch(
        self,
        base_url: str,
        ref: ReleaseRef,
        archive: ArchiveReader | None = None,
    ) -> ReleaseMetadata:
        if self.source == "archive":
            if archive is None:
                raise MetadataIncomplete(f"Archive-sourced metadata for {ref} needs the archive")
            return await self._fetch_with_archive(base_url, ref, archive)
        return await self._fetch_http(base_url, ref)

    async def _fetch_http(self, base_url: str, ref: ReleaseRef) -> ReleaseMetadata:
        release_url = f"{package_url(base_url, ref)}/{ref.version}"
        times_text, manifest_text, docs_text, readme = await self._gather(
            ref,
            f"{package_url(base_url, ref)}/releases.json",
            f"{release_url}/elm.json",
            f"{release_url}/docs.json",
            f"{release_url}/README.md",
        )
        manifest = _parse(PackageManifest, manifest_text, "elm.json", ref)
        return self._assemble(ref, times_text, manifest, manifest_text, readme, docs_text)

    async def _fetch_with_archive(
        self, base_url: str, ref: ReleaseRef, archive: ArchiveReader
    ) -> ReleaseMetadata:
        times_text, docs_text = await self._gather(
            ref,
            f"{package_url(base_url, ref)}/releases.json",
            f"{package_url(base_url, ref)}/{ref.version}/docs.json",
        )
        manifest, manifest_text = archive.read_manifest()
        return self._assemble(
            ref, times_text, manifest, manifest_text, archive.read_readme(), docs_text
        )

    async def _gather(self, ref: ReleaseRef, *urls: str) -> list[str]:
        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(self._fetcher.get_text(url)) for url in urls]
        except ExceptionGroup as group:
            failures = [exc for exc in group.exceptions if isinstance(exc, MirrorError)]
            if len(failures) != len(group.exceptions):
                raise
            raise MetadataIncomplete(
                f"Metadata fetch for {ref} failed: {failures[0].message}"
            ) from failures[0]
        return [task.result() for task in tasks]

    def _assemble(
        self,
        ref: ReleaseRef,
        times_text: str,
        manifest: PackageManifest,
        manifest_text: str,
        readme: str,
        docs_text: str,
    ) -> ReleaseMetadata:
        times = _parse(ReleaseTimes, times_text, "releases.json", ref)
        published_at = times.published_at(ref.version)
        if published_at is None:
            raise MetadataIncomplete(f"releases.json has no publish time for {ref}")
        docs = _parse(DocsIndex, docs_text, "docs.json", ref)
        try:
            return ReleaseMetadata(
                published_at=published_at,
                manifest=manifest,
                manifest_json=manifest_text,
                readme=readme,
                docs=docs,
                docs_json=docs_text,
            )
        except ValidationError as exc:
            raise MetadataIncomplete(f"Incomplete metadata for {ref}: {exc}") from exc
