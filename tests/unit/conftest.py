"""Unit-specific fixtures (no I/O beyond in-memory SQLite and mocked HTTP)."""

from __future__ import annotations

import aiosqlite
import httpx
import pytest

from elmirror.catalog import CatalogStore
from elmirror.fetcher import Fetcher


@pytest.fixture()
async def catalog():
    """In-memory SQLite catalog for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        store = CatalogStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
async def fetcher(settings):
    async with httpx.AsyncClient() as client:
        yield Fetcher(client, settings.fetcher)
