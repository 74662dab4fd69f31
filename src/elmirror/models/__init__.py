from __future__ import annotations

from elmirror.models.catalog import Package, Release, ReleaseRef, Uplink, Version, sort_versions
from elmirror.models.upstream import (
    DocsIndex,
    ModuleDocs,
    PackageManifest,
    ReleaseMetadata,
    ReleaseTimes,
)

__all__ = [
    # catalog
    "Uplink",
    "Package",
    "Release",
    "ReleaseRef",
    "Version",
    "sort_versions",
    # upstream documents
    "ReleaseTimes",
    "PackageManifest",
    "ModuleDocs",
    "DocsIndex",
    "ReleaseMetadata",
]
