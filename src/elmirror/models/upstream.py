"""Typed records for documents consumed from uplinks and archives.

Upstream JSON is validated on parse; a shape mismatch surfaces as
``MetadataIncomplete`` in the fetchers instead of a KeyError downstream.
The raw document text is kept next to the typed record so the catalog
stores exactly what the uplink served.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

from elmirror.models.catalog import Version


class ReleaseTimes(RootModel[dict[str, int]]):
    """``releases.json``: version string to publish time in unix seconds."""

    @field_validator("root")
    @classmethod
    def validate_versions(cls, v: dict[str, int]) -> dict[str, int]:
        for version in v:
            Version.parse(version)
        return v

    def published_at(self, version: Version) -> int | None:
        return self.root.get(str(version))


class PackageManifest(BaseModel):
    """``elm.json`` (or legacy ``elm-package.json``) for a package release.

    Only the fields the catalog reads are typed; the rest is allowed through.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = "package"
    name: str | None = None
    summary: str = ""
    license: str = ""
    version: str | None = None
    exposed_modules: list[str] | dict[str, list[str]] = Field(
        default_factory=list, alias="exposed-modules"
    )


class ModuleDocs(BaseModel):
    """One module entry of ``docs.json``."""

    model_config = ConfigDict(extra="allow")

    name: str
    comment: str = ""


class DocsIndex(RootModel[list[ModuleDocs]]):
    pass


class ReleaseMetadata(BaseModel):
    """Everything the catalog needs about a release besides its archive."""

    published_at: int
    manifest: PackageManifest
    manifest_json: str
    readme: str
    docs: DocsIndex
    docs_json: str
