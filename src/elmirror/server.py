"""Process entry point: ``python -m elmirror.server`` or the ``elmirror`` script.

Loads settings, opens the catalog and runs replication cycles on the
configured interval until interrupted. With ``sync.run_once`` it runs a
single cycle and exits. Invalid configuration exits non-zero before any
I/O happens.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import aiosqlite
import structlog
from pydantic import ValidationError

from elmirror.config import Settings
from elmirror.fetcher import build_http_client
from elmirror.logging_config import setup_logging
from elmirror.state import build_state
from elmirror.sync import SyncScheduler, SyncState

log = structlog.get_logger()


async def run(settings: Settings) -> int:
    db_path = Path(settings.catalog.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db, build_http_client(settings.fetcher) as client:
        state = await build_state(settings, db, client)
        log.info(
            "server_started",
            db_path=str(db_path),
            uplinks=[uplink.url for uplink in settings.uplinks],
            metadata_source=settings.sync.metadata_source,
        )

        if settings.sync.run_once:
            report = await state.orchestrator.trigger()
            return 0 if report is not None and report.outcome is SyncState.COMPLETED else 1

        scheduler = SyncScheduler(
            state.orchestrator,
            settings.sync.interval_seconds,
            run_on_start=settings.sync.run_on_start,
        )
        try:
            await scheduler.start()
        finally:
            await scheduler.stop()
    return 0


def main() -> None:
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.logging)
    try:
        sys.exit(asyncio.run(run(settings)))
    except KeyboardInterrupt:
        log.info("server_stopped")


if __name__ == "__main__":
    main()
