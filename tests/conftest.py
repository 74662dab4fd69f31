"""Shared fixtures: a mocked uplink + origin and test settings."""

from __future__ import annotations

import pytest
import respx

from elmirror.config import Settings
from tests.helpers import ORIGIN_TEMPLATE, UPLINK_A, UPLINK_B, Upstream


@pytest.fixture()
def upstream():
    with respx.mock(assert_all_called=False) as router:
        yield Upstream(router)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path),
        uplinks=[{"url": UPLINK_A}, {"url": UPLINK_B}],
        catalog={"db_path": ":memory:"},
        artifacts={"dir": str(tmp_path / "artifacts")},
        fetcher={"origin_url_template": ORIGIN_TEMPLATE, "deadline_seconds": 5.0},
    )
