from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import NamedTuple

from pydantic import BaseModel, field_validator

from elmirror.errors import InvalidReference

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_VERSION_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


class Version(NamedTuple):
    """Three-component release version. Tuple ordering is numeric per component."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> Version:
        match = _VERSION_RE.match(text.strip())
        if match is None:
            raise InvalidReference(f"Invalid version: {text!r}")
        return cls(*(int(part) for part in match.groups()))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def sort_versions(versions: list[str]) -> list[str]:
    """Sort version strings ascending by numeric component order."""
    return sorted(versions, key=Version.parse)


class ReleaseRef(NamedTuple):
    """One ``author/project@version`` identifier as listed by an uplink."""

    author: str
    project: str
    version: Version

    @classmethod
    def parse(cls, text: str) -> ReleaseRef:
        name, sep, version = text.partition("@")
        author, slash, project = name.partition("/")
        if not sep or not slash or not _NAME_RE.match(author) or not _NAME_RE.match(project):
            raise InvalidReference(f"Invalid release identifier: {text!r}")
        return cls(author, project, Version.parse(version))

    @property
    def name(self) -> str:
        return f"{self.author}/{self.project}"

    def __str__(self) -> str:
        return f"{self.author}/{self.project}@{self.version}"


class Uplink(BaseModel):
    """An upstream registry this catalog mirrors from."""

    id: int
    url: str
    cursor: int = 0


class Package(BaseModel):
    """A package row. ``uplink_id`` is None for locally published packages."""

    id: int | None = None
    author: str
    project: str
    summary: str = ""
    license: str = ""
    uplink_id: int | None = None

    @field_validator("author", "project")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _NAME_RE.match(v):
            raise ValueError(f"Invalid package name component: {v!r}")
        return v

    @property
    def name(self) -> str:
        return f"{self.author}/{self.project}"


class Release(BaseModel):
    """A single immutable release of a package."""

    id: int | None = None
    package_id: int | None = None
    version: Version
    published_at: int  # unix seconds
    manifest: str  # elm.json, serialized
    readme: str
    docs: str  # docs.json, serialized
    content_hash: str  # SHA-1 hex of the stored archive bytes

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> object:
        if isinstance(v, str):
            return Version.parse(v)
        return v

    @property
    def published_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.published_at, UTC)
