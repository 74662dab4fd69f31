"""Turn one remote release identifier into one committed catalog entry."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from elmirror.archive import ArchiveReader
from elmirror.models.catalog import Package, Release

if TYPE_CHECKING:
    from elmirror.catalog import CatalogStore
    from elmirror.content import ContentStore
    from elmirror.metadata import MetadataFetcher
    from elmirror.models.catalog import ReleaseRef, Uplink
    from elmirror.models.upstream import ReleaseMetadata

log = structlog.get_logger()


def build_candidate(
    ref: ReleaseRef,
    metadata: ReleaseMetadata,
    content_hash: str,
    uplink_id: int | None,
) -> tuple[Package, Release]:
    package = Package(
        author=ref.author,
        project=ref.project,
        summary=metadata.manifest.summary,
        license=metadata.manifest.license,
        uplink_id=uplink_id,
    )
    release = Release(
        version=ref.version,
        published_at=metadata.published_at,
        manifest=metadata.manifest_json,
        readme=metadata.readme,
        docs=metadata.docs_json,
        content_hash=content_hash,
    )
    return package, release


class IngestionPipeline:
    """Archive, layout check, metadata, then one catalog transaction.

    No retries here. A failure raises and leaves the uplink cursor where it
    was, so the next cycle starts from the same identifier.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        content: ContentStore,
        metadata: MetadataFetcher,
    ) -> None:
        self._catalog = catalog
        self._content = content
        self._metadata = metadata

    async def ingest(self, uplink: Uplink, ref: ReleaseRef) -> Release:
        archive = await self._content.fetch(ref)
        with ArchiveReader(archive.data, ref.author, ref.project) as reader:
            metadata = await self._metadata.fetch(uplink.url, ref, reader)

        package, release = build_candidate(ref, metadata, archive.content_hash, uplink.id)
        committed = await self._catalog.upsert_package_and_release(package, release, uplink.id)
        log.debug("release_ingested", uplink=uplink.url, ref=str(ref), hash=archive.content_hash)
        return committed
