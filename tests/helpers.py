"""Archive builders and a respx-backed fake uplink + origin for tests."""

from __future__ import annotations

import io
import json
import zipfile
from typing import Any

import httpx
import respx


UPLINK_A = "https://uplink-a.test"
UPLINK_B = "https://uplink-b.test"
ORIGIN_TEMPLATE = "https://origin.test/{author}/{project}/zipball/{version}/"
REVISION = "1a2b3c4d5e6f"

SAMPLE_DOCS = [{"name": "Html", "comment": "Build HTML.", "unions": [], "values": []}]


def manifest_for(author: str, project: str, version: str, **extra: Any) -> dict[str, Any]:
    manifest = {
        "type": "package",
        "name": f"{author}/{project}",
        "summary": f"The {project} package",
        "license": "BSD-3-Clause",
        "version": version,
        "exposed-modules": ["Html"],
        "elm-version": "0.19.0 <= v < 0.20.0",
        "dependencies": {"elm/core": "1.0.0 <= v < 2.0.0"},
        "test-dependencies": {},
    }
    manifest.update(extra)
    return manifest


def zip_bytes(root: str, files: dict[str, str | bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(root, "")
        for name, text in files.items():
            zf.writestr(root + name, text)
    return buf.getvalue()


def release_archive(
    author: str,
    project: str,
    version: str = "1.0.0",
    *,
    revision: str = REVISION,
    files: dict[str, str | bytes] | None = None,
) -> bytes:
    if files is None:
        files = {
            "elm.json": json.dumps(manifest_for(author, project, version)),
            "README.md": f"# {project}\n",
            "src/Html.elm": "module Html exposing (..)\n",
        }
    return zip_bytes(f"{author}-{project}-{revision}/", files)


class Upstream:
    """Registers uplink and origin routes on a respx router."""

    def __init__(self, router: respx.MockRouter) -> None:
        self.router = router
        self._times: dict[tuple[str, str, str], dict[str, int]] = {}

    def delta(self, base_url: str, cursor: int, names: list[str]) -> respx.Route:
        return self.router.get(f"{base_url}/all-packages/since/{cursor}").mock(
            return_value=httpx.Response(200, json=names)
        )

    def release(
        self,
        base_url: str,
        name: str,
        *,
        published_at: int = 1_700_000_000,
        summary: str | None = None,
        archive: bytes | None = None,
        origin_status: int = 200,
    ) -> respx.Route:
        """Mock metadata for ``author/project@version`` and its origin archive.

        Returns the origin route so tests can count archive downloads.
        """
        package, _, version = name.partition("@")
        author, _, project = package.partition("/")
        times = self._times.setdefault((base_url, author, project), {})
        times[version] = published_at

        package_url = f"{base_url}/packages/{author}/{project}"
        extra = {"summary": summary} if summary is not None else {}
        self.router.get(f"{package_url}/releases.json").mock(
            side_effect=lambda request: httpx.Response(200, json=times)
        )
        self.router.get(f"{package_url}/{version}/elm.json").mock(
            return_value=httpx.Response(200, json=manifest_for(author, project, version, **extra))
        )
        self.router.get(f"{package_url}/{version}/docs.json").mock(
            return_value=httpx.Response(200, json=SAMPLE_DOCS)
        )
        self.router.get(f"{package_url}/{version}/README.md").mock(
            return_value=httpx.Response(200, text=f"# {project}\n")
        )

        origin_url = ORIGIN_TEMPLATE.format(author=author, project=project, version=version)
        route = self.router.get(origin_url)
        if origin_status != 200:
            return route.mock(return_value=httpx.Response(origin_status))
        if archive is None:
            archive = release_archive(author, project, version)
        return route.mock(return_value=httpx.Response(200, content=archive))
