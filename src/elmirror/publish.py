"""Direct publication of a release into the local catalog (no uplink)."""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import ValidationError

from elmirror.archive import ArchiveReader
from elmirror.errors import ContentHashMismatch, MetadataIncomplete
from elmirror.ingest import build_candidate
from elmirror.models.catalog import ReleaseRef, Version
from elmirror.models.upstream import DocsIndex, ReleaseMetadata

if TYPE_CHECKING:
    from elmirror.catalog import CatalogStore
    from elmirror.content import ContentStore
    from elmirror.models.catalog import Release

log = structlog.get_logger()

HashVerification = Literal["off", "if_provided", "required"]


class Publisher:
    def __init__(
        self,
        catalog: CatalogStore,
        content: ContentStore,
        hash_verification: HashVerification = "if_provided",
    ) -> None:
        self._catalog = catalog
        self._content = content
        self._hash_verification = hash_verification

    def _verify(self, ref: ReleaseRef, actual: str, expected: str | None) -> None:
        if self._hash_verification == "off":
            return
        if expected is None:
            if self._hash_verification == "required":
                raise ContentHashMismatch(f"Publishing {ref} requires an expected content hash")
            return
        if expected.lower() != actual:
            raise ContentHashMismatch(f"Archive for {ref} hashes to {actual}, expected {expected}")

    async def publish(
        self,
        author: str,
        project: str,
        version: str,
        docs: list[dict[str, Any]],
        expected_hash: str | None = None,
    ) -> Release:
        """Fetch, verify and commit ``author/project@version`` as a local package."""
        ref = ReleaseRef(author, project, Version.parse(version))
        archive = await self._content.fetch(ref)
        self._verify(ref, archive.content_hash, expected_hash)

        with ArchiveReader(archive.data, author, project) as reader:
            manifest, manifest_json = reader.read_manifest()
            readme = reader.read_readme()
        try:
            metadata = ReleaseMetadata(
                published_at=int(time.time()),
                manifest=manifest,
                manifest_json=manifest_json,
                readme=readme,
                docs=DocsIndex.model_validate(docs),
                docs_json=json.dumps(docs, separators=(",", ":")),
            )
        except ValidationError as exc:
            raise MetadataIncomplete(f"Invalid docs for {ref}: {exc}") from exc

        package, release = build_candidate(ref, metadata, archive.content_hash, None)
        committed = await self._catalog.register_local_package(package, release)
        log.info("release_published", ref=str(ref), hash=archive.content_hash)
        return committed
