"""Read files out of a cached release archive.

Origin archives hold exactly one top-level directory named
``{author}-{project}-{revision}/`` where ``revision`` is a 5 to 40 character
hex commit id. Paths are resolved relative to that directory. If no entry
matches, the archive is rejected; there is no fallback guess.
"""

from __future__ import annotations

import io
import json
import re
import zipfile
import zlib
from typing import TYPE_CHECKING

from pydantic import ValidationError

from elmirror.errors import ArchiveLayoutMismatch, MetadataIncomplete
from elmirror.models.upstream import PackageManifest

if TYPE_CHECKING:
    from types import TracebackType

MANIFEST_NAMES = ("elm.json", "elm-package.json")
README_NAME = "README.md"


def root_pattern(author: str, project: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(author)}-{re.escape(project)}-[0-9a-f]{{5,40}}/$",
        re.IGNORECASE,
    )


class ArchiveReader:
    """Scoped reader over archive bytes. Use as a context manager."""

    def __init__(self, data: bytes, author: str, project: str) -> None:
        self._author = author
        self._project = project
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise ArchiveLayoutMismatch(
                f"Archive for {author}/{project} is not a readable zip: {exc}"
            ) from exc
        try:
            self.root = self._find_root()
        except BaseException:
            self._zip.close()
            raise

    def __enter__(self) -> ArchiveReader:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def _find_root(self) -> str:
        pattern = root_pattern(self._author, self._project)
        top_level = {
            name.split("/", 1)[0] + "/" if "/" in name else name
            for name in self._zip.namelist()
        }
        matches = sorted(entry for entry in top_level if pattern.match(entry))
        if len(matches) != 1:
            raise ArchiveLayoutMismatch(
                f"Expected one top-level '{self._author}-{self._project}-<revision>/' "
                f"directory, found {sorted(top_level)}"
            )
        return matches[0]

    def read_text(self, path: str) -> str | None:
        """Decoded text of ``path`` under the root directory, or None if absent."""
        member = self.root + path.lstrip("/")
        try:
            data = self._zip.read(member)
        except KeyError:
            return None
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ArchiveLayoutMismatch(f"Corrupt archive member {member}: {exc}") from exc
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MetadataIncomplete(f"{member} is not valid UTF-8: {exc}") from exc

    def read_manifest(self) -> tuple[PackageManifest, str]:
        """Current manifest name first, then the legacy alias; empty if neither exists."""
        for name in MANIFEST_NAMES:
            text = self.read_text(name)
            if text is None:
                continue
            try:
                return PackageManifest.model_validate(json.loads(text)), text
            except (ValueError, ValidationError) as exc:
                raise MetadataIncomplete(
                    f"Invalid {name} in archive for {self._author}/{self._project}: {exc}"
                ) from exc
        return PackageManifest(), "{}"

    def read_readme(self) -> str:
        return self.read_text(README_NAME) or ""
