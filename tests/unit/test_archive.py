"""Unit tests for elmirror.archive."""

from __future__ import annotations

import json

import pytest

from elmirror.archive import ArchiveReader, root_pattern
from elmirror.errors import ArchiveLayoutMismatch, MetadataIncomplete
from tests.helpers import release_archive, zip_bytes


class TestRootPattern:
    @pytest.mark.parametrize("revision", ["abcde", "ABCDEF0123", "a" * 40])
    def test_accepts_hex_revisions(self, revision: str) -> None:
        assert root_pattern("elm", "html").match(f"elm-html-{revision}/")

    @pytest.mark.parametrize(
        "entry",
        ["elm-html-abcd/", "elm-html-" + "a" * 41 + "/", "elm-html-xyz12/", "elm-html-abcde"],
    )
    def test_rejects(self, entry: str) -> None:
        assert not root_pattern("elm", "html").match(entry)

    def test_escapes_names(self) -> None:
        assert not root_pattern("a.b", "c").match("aXb-c-abcde/")


class TestArchiveReader:
    def test_reads_files_relative_to_root(self) -> None:
        with ArchiveReader(release_archive("elm", "html"), "elm", "html") as reader:
            assert reader.root == "elm-html-1a2b3c4d5e6f/"
            assert reader.read_text("src/Html.elm") == "module Html exposing (..)\n"
            assert reader.read_readme() == "# html\n"

    def test_missing_file_is_none(self) -> None:
        with ArchiveReader(release_archive("elm", "html"), "elm", "html") as reader:
            assert reader.read_text("nope.txt") is None

    def test_random_folder_is_layout_mismatch(self) -> None:
        data = zip_bytes("random-folder/", {"elm.json": "{}"})
        with pytest.raises(ArchiveLayoutMismatch) as exc_info:
            ArchiveReader(data, "elm", "html")
        assert exc_info.value.recoverable is False

    def test_other_package_root_is_layout_mismatch(self) -> None:
        data = release_archive("elm", "json")
        with pytest.raises(ArchiveLayoutMismatch):
            ArchiveReader(data, "elm", "html")

    def test_not_a_zip_is_layout_mismatch(self) -> None:
        with pytest.raises(ArchiveLayoutMismatch):
            ArchiveReader(b"definitely not a zip", "elm", "html")

    def test_closed_after_context(self) -> None:
        reader = ArchiveReader(release_archive("elm", "html"), "elm", "html")
        with reader:
            pass
        with pytest.raises(ValueError):
            reader.read_text("elm.json")

    def test_closed_after_error_in_block(self) -> None:
        reader = ArchiveReader(release_archive("elm", "html"), "elm", "html")
        with pytest.raises(RuntimeError), reader:
            raise RuntimeError("boom")
        assert reader._zip.fp is None


class TestReadManifest:
    def test_current_manifest(self) -> None:
        with ArchiveReader(release_archive("elm", "html"), "elm", "html") as reader:
            manifest, text = reader.read_manifest()
        assert manifest.summary == "The html package"
        assert json.loads(text)["name"] == "elm/html"

    def test_legacy_manifest(self) -> None:
        legacy = {"version": "1.0.0", "summary": "Old style", "license": "BSD3"}
        data = release_archive(
            "elm-lang", "core", files={"elm-package.json": json.dumps(legacy)}
        )
        with ArchiveReader(data, "elm-lang", "core") as reader:
            manifest, text = reader.read_manifest()
        assert manifest.summary == "Old style"
        assert json.loads(text) == legacy

    def test_current_name_wins_over_legacy(self) -> None:
        data = release_archive(
            "elm",
            "html",
            files={
                "elm.json": json.dumps({"summary": "current"}),
                "elm-package.json": json.dumps({"summary": "legacy"}),
            },
        )
        with ArchiveReader(data, "elm", "html") as reader:
            manifest, _ = reader.read_manifest()
        assert manifest.summary == "current"

    def test_no_manifest_is_empty(self) -> None:
        data = release_archive("elm", "html", files={"README.md": "hi"})
        with ArchiveReader(data, "elm", "html") as reader:
            manifest, text = reader.read_manifest()
        assert manifest.summary == ""
        assert text == "{}"

    def test_malformed_manifest(self) -> None:
        data = release_archive("elm", "html", files={"elm.json": "{not json"})
        with ArchiveReader(data, "elm", "html") as reader, pytest.raises(MetadataIncomplete):
            reader.read_manifest()


class TestUnreadableMembers:
    def test_non_utf8_readme(self) -> None:
        data = release_archive("elm", "html", files={"README.md": b"\xff\xfe bad"})
        with ArchiveReader(data, "elm", "html") as reader, pytest.raises(MetadataIncomplete):
            reader.read_readme()

    def test_non_utf8_manifest(self) -> None:
        data = release_archive("elm", "html", files={"elm.json": b"\xff{}"})
        with ArchiveReader(data, "elm", "html") as reader, pytest.raises(MetadataIncomplete):
            reader.read_manifest()

    def test_corrupt_member_is_layout_mismatch(self) -> None:
        payload = b"module Html exposing (corrupt-me)"
        data = release_archive("elm", "html", files={"src/Html.elm": payload})
        assert data.count(payload) == 1
        damaged = data.replace(payload, payload.replace(b"corrupt", b"CORRUPT"))

        with ArchiveReader(damaged, "elm", "html") as reader:
            with pytest.raises(ArchiveLayoutMismatch, match="Corrupt"):
                reader.read_text("src/Html.elm")
