"""Unit tests for elmirror.fetcher."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from elmirror.config import FetcherSettings
from elmirror.errors import ErrorCode, MirrorError, UpstreamNotFound, UpstreamUnavailable
from elmirror.fetcher import Fetcher, build_http_client, origin_archive_url
from elmirror.models import ReleaseRef

# ---------------------------------------------------------------------------
# build_http_client
# ---------------------------------------------------------------------------


class TestBuildHttpClient:
    async def test_client_configuration(self) -> None:
        settings = FetcherSettings(connect_timeout=2.0, read_timeout=7.0, user_agent="t/1")
        async with build_http_client(settings) as client:
            assert isinstance(client, httpx.AsyncClient)
            # Origins answer archive requests with redirects.
            assert client.follow_redirects is True
            assert client.timeout.connect == 2.0
            assert client.timeout.read == 7.0
            assert client.headers["User-Agent"] == "t/1"


def test_origin_archive_url() -> None:
    ref = ReleaseRef.parse("elm/core@1.0.5")
    url = origin_archive_url("https://github.com/{author}/{project}/zipball/{version}/", ref)
    assert url == "https://github.com/elm/core/zipball/1.0.5/"


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class TestFetcher:
    async def test_successful_fetch(self) -> None:
        with respx.mock:
            respx.get("https://example.com/doc").mock(
                return_value=httpx.Response(200, text="hello")
            )
            async with httpx.AsyncClient() as client:
                assert await Fetcher(client).get_text("https://example.com/doc") == "hello"

    async def test_json(self) -> None:
        with respx.mock:
            respx.get("https://example.com/doc.json").mock(
                return_value=httpx.Response(200, json={"a": 1})
            )
            async with httpx.AsyncClient() as client:
                assert await Fetcher(client).get_json("https://example.com/doc.json") == {"a": 1}

    async def test_invalid_json(self) -> None:
        with respx.mock:
            respx.get("https://example.com/doc.json").mock(
                return_value=httpx.Response(200, text="<html>")
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(UpstreamUnavailable):
                    await Fetcher(client).get_json("https://example.com/doc.json")

    async def test_404_raises_not_found(self) -> None:
        with respx.mock:
            respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                with pytest.raises(UpstreamNotFound) as exc_info:
                    await Fetcher(client).get("https://example.com/missing")
                assert exc_info.value.code == ErrorCode.UPSTREAM_NOT_FOUND
                assert exc_info.value.recoverable is False

    async def test_500_raises_unavailable(self) -> None:
        with respx.mock:
            respx.get("https://example.com/error").mock(return_value=httpx.Response(500))
            async with httpx.AsyncClient() as client:
                with pytest.raises(UpstreamUnavailable) as exc_info:
                    await Fetcher(client).get("https://example.com/error")
                assert exc_info.value.recoverable is True

    async def test_network_error_raises_unavailable(self) -> None:
        with respx.mock:
            respx.get("https://example.com/down").mock(
                side_effect=httpx.ConnectError("Connection refused")
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(UpstreamUnavailable):
                    await Fetcher(client).get("https://example.com/down")

    async def test_deadline_bounds_slow_responses(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        with respx.mock:
            respx.get("https://example.com/slow").mock(side_effect=slow)
            async with httpx.AsyncClient() as client:
                fetcher = Fetcher(client, FetcherSettings(deadline_seconds=0.05))
                with pytest.raises(UpstreamUnavailable, match="Timed out"):
                    await fetcher.get("https://example.com/slow")

    async def test_redirect_followed(self) -> None:
        with respx.mock:
            respx.get("https://example.com/old").mock(
                return_value=httpx.Response(
                    302, headers={"location": "https://cdn.example.com/new"}
                )
            )
            respx.get("https://cdn.example.com/new").mock(
                return_value=httpx.Response(200, content=b"zipdata")
            )
            async with build_http_client() as client:
                assert await Fetcher(client).get_bytes("https://example.com/old") == b"zipdata"

    async def test_too_many_redirects(self) -> None:
        with respx.mock(assert_all_called=False) as router:
            for i in range(3):
                router.get(f"https://example.com/r{i}").mock(
                    return_value=httpx.Response(
                        301, headers={"location": f"https://example.com/r{i + 1}"}
                    )
                )
            router.get("https://example.com/r3").mock(return_value=httpx.Response(200))
            async with build_http_client(FetcherSettings(max_redirects=2)) as client:
                with pytest.raises(UpstreamUnavailable, match="redirects"):
                    await Fetcher(client).get("https://example.com/r0")

    def test_errors_are_mirror_errors(self) -> None:
        assert issubclass(UpstreamNotFound, MirrorError)
        assert issubclass(UpstreamUnavailable, MirrorError)
