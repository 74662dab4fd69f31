"""Integration test fixtures.

Provides a fully wired AppState with in-memory SQLite, a temporary artifact
directory and an httpx client whose traffic is served by the ``upstream``
respx router.
"""

from __future__ import annotations

import os

import aiosqlite
import pytest

from elmirror.fetcher import build_http_client
from elmirror.state import AppState, build_state


@pytest.fixture()
async def app_state(settings, upstream) -> AppState:
    """Full AppState with uplinks A (id 1) and B (id 2) registered."""
    async with (
        aiosqlite.connect(":memory:") as db,
        build_http_client(settings.fetcher) as client,
    ):
        yield await build_state(settings, db, client)


@pytest.fixture()
def subprocess_env(tmp_path) -> dict[str, str]:
    """Environment for running the server as a subprocess against a scratch data dir."""
    env = os.environ.copy()
    env["ELMIRROR__DATA_DIR"] = str(tmp_path)
    env["ELMIRROR__CATALOG__DB_PATH"] = str(tmp_path / "catalog.db")
    env["ELMIRROR__ARTIFACTS__DIR"] = str(tmp_path / "artifacts")
    env["ELMIRROR__SYNC__RUN_ONCE"] = "true"
    env["ELMIRROR__LOGGING__FORMAT"] = "text"
    return env
