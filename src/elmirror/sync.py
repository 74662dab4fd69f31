"""Replication cycles and the scheduler that triggers them.

One cycle runs every uplink concurrently. Inside an uplink, releases are
ingested strictly one after another in the order the delta fetch returned
them (oldest first). The first failure ends that uplink's cycle: skipping
ahead would let the cursor pass a release that never committed. Releases
committed before the failure stay committed.

A terminal failure is remembered per uplink. While the cursor still points at
that ref, later cycles report it without downloading again, until
``clear_terminal_failures`` is called or the process restarts.

Cycles never overlap. A trigger that arrives while a cycle is running is
dropped rather than queued.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from elmirror.errors import DuplicateRelease, ErrorCode, MirrorError

if TYPE_CHECKING:
    from elmirror.catalog import CatalogStore
    from elmirror.delta import DeltaFetcher
    from elmirror.ingest import IngestionPipeline
    from elmirror.models.catalog import Uplink

log = structlog.get_logger()


class SyncState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UplinkReport:
    uplink_id: int
    url: str
    pending: int = 0
    committed: int = 0
    skipped: int = 0
    failed_ref: str | None = None
    error_code: ErrorCode | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    outcome: SyncState
    started_at: float
    finished_at: float = 0.0
    uplinks: list[UplinkReport] = field(default_factory=list)

    @property
    def committed(self) -> int:
        return sum(report.committed for report in self.uplinks)


class SyncOrchestrator:
    """Runs replication cycles: ``Idle → Running → {Completed, Failed} → Idle``."""

    def __init__(
        self,
        catalog: CatalogStore,
        delta: DeltaFetcher,
        pipeline: IngestionPipeline,
        *,
        advance_past_duplicates: bool = False,
    ) -> None:
        self._catalog = catalog
        self._delta = delta
        self._pipeline = pipeline
        self._advance_past_duplicates = advance_past_duplicates
        self.state = SyncState.IDLE
        self.last_report: CycleReport | None = None
        # uplink id -> (ref, error) of the terminal failure blocking it.
        self._terminal: dict[int, tuple[str, MirrorError]] = {}

    def clear_terminal_failures(self, uplink_id: int | None = None) -> None:
        """Let the next cycle retry refs that previously failed terminally."""
        if uplink_id is None:
            self._terminal.clear()
        else:
            self._terminal.pop(uplink_id, None)

    async def trigger(self) -> CycleReport | None:
        """Run one cycle. Returns None without doing anything if one is already running."""
        if self.state is not SyncState.IDLE:
            log.info("sync_trigger_dropped", state=self.state.value)
            return None
        self.state = SyncState.RUNNING
        report = CycleReport(outcome=SyncState.RUNNING, started_at=time.time())
        try:
            uplinks = await self._catalog.list_uplinks()
            log.info("sync_cycle_started", uplinks=len(uplinks))
            results = await asyncio.gather(
                *(self._sync_uplink(uplink) for uplink in uplinks), return_exceptions=True
            )
            for uplink, result in zip(uplinks, results, strict=True):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    log.error("uplink_task_crashed", uplink=uplink.url, exc_info=result)
                    result = UplinkReport(uplink_id=uplink.id, url=uplink.url, error=repr(result))
                report.uplinks.append(result)
            report.outcome = SyncState.COMPLETED
        except Exception:
            log.error("sync_cycle_failed", exc_info=True)
            report.outcome = SyncState.FAILED
        finally:
            report.finished_at = time.time()
            self.last_report = report
            self.state = SyncState.IDLE

        log.info(
            "sync_cycle_finished",
            outcome=report.outcome.value,
            committed=report.committed,
            duration_s=round(report.finished_at - report.started_at, 3),
        )
        return report

    async def _sync_uplink(self, uplink: Uplink) -> UplinkReport:
        report = UplinkReport(uplink_id=uplink.id, url=uplink.url)
        try:
            refs = await self._delta.fetch(uplink)
        except MirrorError as exc:
            log.warning("delta_fetch_failed", uplink=uplink.url, code=exc.code, error=exc.message)
            report.error_code = exc.code
            report.error = exc.message
            return report

        report.pending = len(refs)
        blocked = self._terminal.pop(uplink.id, None)
        if blocked is not None and refs and str(refs[0]) == blocked[0]:
            # Cursor has not moved: the same ref would fail the same way.
            self._terminal[uplink.id] = blocked
            failed_ref, error = blocked
            report.failed_ref = failed_ref
            report.error_code = error.code
            report.error = error.message
            log.warning(
                "uplink_blocked",
                uplink=uplink.url,
                ref=failed_ref,
                code=error.code,
                action="operator_attention",
            )
            return report

        for ref in refs:
            try:
                try:
                    await self._pipeline.ingest(uplink, ref)
                except DuplicateRelease:
                    if not self._advance_past_duplicates:
                        raise
                    await self._catalog.advance_cursor(uplink.id)
                    report.skipped += 1
                    log.info("duplicate_release_skipped", uplink=uplink.url, ref=str(ref))
                else:
                    report.committed += 1
            except MirrorError as exc:
                self._record_failure(report, uplink, str(ref), exc)
                break

        log.info(
            "uplink_synced",
            uplink=uplink.url,
            pending=report.pending,
            committed=report.committed,
            stopped_at=report.failed_ref,
        )
        return report

    def _record_failure(
        self, report: UplinkReport, uplink: Uplink, ref: str, exc: MirrorError
    ) -> None:
        report.failed_ref = ref
        report.error_code = exc.code
        report.error = exc.message
        if not exc.recoverable:
            self._terminal[uplink.id] = (ref, exc)
        if exc.code is ErrorCode.ARCHIVE_LAYOUT_MISMATCH:
            log.error(
                "archive_layout_mismatch",
                uplink=uplink.url,
                ref=ref,
                error=exc.message,
                action="operator_attention",
            )
        elif exc.recoverable:
            log.warning(
                "ingest_failed_will_retry",
                uplink=uplink.url,
                ref=ref,
                code=exc.code,
                error=exc.message,
            )
        else:
            log.error(
                "ingest_failed_terminal",
                uplink=uplink.url,
                ref=ref,
                code=exc.code,
                error=exc.message,
                action="operator_attention",
            )


class SyncScheduler:
    """Periodic trigger for the orchestrator.

    The loop awaits each cycle before sleeping, so the scheduler itself never
    overlaps cycles; the orchestrator still drops any trigger from elsewhere
    that arrives mid-cycle.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: float,
        *,
        run_on_start: bool = True,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._run_on_start = run_on_start
        self._task: asyncio.Task[None] | None = None

    async def run_forever(self) -> None:
        if not self._run_on_start:
            await asyncio.sleep(self._interval)
        while True:
            await self._orchestrator.trigger()
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="elmirror-sync")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
