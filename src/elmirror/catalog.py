"""SQLite catalog of uplinks, packages and releases.

The catalog is the only component that writes rows. It owns one
``aiosqlite`` connection, and every statement against it runs while holding
one ``asyncio.Lock``. A BEGIN…COMMIT span therefore never interleaves with
statements from another uplink's task, which would otherwise share the
connection and see (or commit) each other's half-finished work.

Commit and rollback are shielded from cancellation: a shutdown in the middle
of an ingestion leaves either the whole release or nothing.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from elmirror.errors import DuplicateRelease, TransactionFailed
from elmirror.models.catalog import Package, Release, Uplink, Version, sort_versions

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

log = structlog.get_logger()

_CREATE_UPLINKS_TABLE = """
CREATE TABLE IF NOT EXISTS uplinks (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    url     TEXT NOT NULL UNIQUE,
    cursor  INTEGER NOT NULL DEFAULT 0 CHECK (cursor >= 0)
)
"""

_CREATE_PACKAGES_TABLE = """
CREATE TABLE IF NOT EXISTS packages (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    author     TEXT NOT NULL,
    project    TEXT NOT NULL,
    summary    TEXT NOT NULL DEFAULT '',
    license    TEXT NOT NULL DEFAULT '',
    uplink_id  INTEGER REFERENCES uplinks(id)
)
"""

# NULL uplink_id marks a local package; IFNULL keeps local names unique too.
_CREATE_PACKAGES_INDEX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_packages_identity
ON packages(author, project, IFNULL(uplink_id, 0))
"""

# AUTOINCREMENT: release ids are the event indices served by
# all-packages/since/{index} and must never be reused.
_CREATE_RELEASES_TABLE = """
CREATE TABLE IF NOT EXISTS releases (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    package_id    INTEGER NOT NULL REFERENCES packages(id),
    version       TEXT NOT NULL,
    major         INTEGER NOT NULL,
    minor         INTEGER NOT NULL,
    patch         INTEGER NOT NULL,
    published_at  INTEGER NOT NULL,
    manifest      TEXT NOT NULL,
    readme        TEXT NOT NULL,
    docs          TEXT NOT NULL,
    content_hash  TEXT NOT NULL,
    UNIQUE (package_id, version)
)
"""

_CREATE_RELEASES_INDEX = "CREATE INDEX IF NOT EXISTS idx_releases_package ON releases(package_id)"

_RELEASE_COLUMNS = (
    "r.id, r.package_id, r.version, r.published_at, r.manifest, r.readme, r.docs, r.content_hash"
)


def _release_from_row(row: Iterable[Any]) -> Release:
    rid, package_id, version, published_at, manifest, readme, docs, content_hash = row
    return Release(
        id=rid,
        package_id=package_id,
        version=version,
        published_at=published_at,
        manifest=manifest,
        readme=readme,
        docs=docs,
        content_hash=content_hash,
    )


def _inserted_id(cursor: aiosqlite.Cursor) -> int:
    if cursor.lastrowid is None:
        raise TransactionFailed("INSERT reported no row id")
    return cursor.lastrowid


class CatalogStore:
    """Durable package catalog with serialized, all-or-nothing writes."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        async with self._lock:
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute("PRAGMA foreign_keys = ON")
            await self._db.execute(_CREATE_UPLINKS_TABLE)
            await self._db.execute(_CREATE_PACKAGES_TABLE)
            await self._db.execute(_CREATE_PACKAGES_INDEX)
            await self._db.execute(_CREATE_RELEASES_TABLE)
            await self._db.execute(_CREATE_RELEASES_INDEX)
            await self._db.commit()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            try:
                await self._db.execute("BEGIN IMMEDIATE")
                yield self._db
            except BaseException:
                # A cancelled BEGIN still runs on the worker thread; this
                # rollback queues behind it.
                await asyncio.shield(self._db.rollback())
                raise
            else:
                await asyncio.shield(self._db.commit())

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[Any]:
        async with self._lock:
            cursor = await self._db.execute(sql, params)
            return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        async with self._lock:
            cursor = await self._db.execute(sql, params)
            return await cursor.fetchone()

    # ------------------------------------------------------------------
    # Uplinks
    # ------------------------------------------------------------------

    async def ensure_uplink(self, url: str) -> Uplink:
        """Create the uplink row on first sight (cursor 0) and return it."""
        try:
            async with self._transaction() as db:
                await db.execute("INSERT OR IGNORE INTO uplinks (url) VALUES (?)", (url,))
        except aiosqlite.Error as exc:
            raise TransactionFailed(f"Could not register uplink {url}: {exc}") from exc
        row = await self._fetchone("SELECT id, url, cursor FROM uplinks WHERE url = ?", (url,))
        return Uplink(id=row[0], url=row[1], cursor=row[2])

    async def get_uplink(self, uplink_id: int) -> Uplink | None:
        row = await self._fetchone(
            "SELECT id, url, cursor FROM uplinks WHERE id = ?", (uplink_id,)
        )
        if row is None:
            return None
        return Uplink(id=row[0], url=row[1], cursor=row[2])

    async def list_uplinks(self) -> list[Uplink]:
        rows = await self._fetchall("SELECT id, url, cursor FROM uplinks ORDER BY id")
        return [Uplink(id=r[0], url=r[1], cursor=r[2]) for r in rows]

    async def advance_cursor(self, uplink_id: int) -> None:
        """Step the cursor over one event without committing a release."""
        try:
            async with self._transaction() as db:
                await self._advance_cursor(db, uplink_id)
        except aiosqlite.Error as exc:
            raise TransactionFailed(f"Could not advance cursor of uplink {uplink_id}") from exc

    async def _advance_cursor(self, db: aiosqlite.Connection, uplink_id: int) -> None:
        cursor = await db.execute(
            "UPDATE uplinks SET cursor = cursor + 1 WHERE id = ?", (uplink_id,)
        )
        if cursor.rowcount != 1:
            raise TransactionFailed(f"Unknown uplink id {uplink_id}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_package_and_release(
        self, package: Package, release: Release, uplink_id: int
    ) -> Release:
        """Commit one replicated release and advance its uplink's cursor by one.

        Package insert-or-refresh, release insert and cursor step commit
        together or not at all. An existing ``(package, version)`` rolls the
        whole transaction back and raises ``DuplicateRelease``; the package's
        summary and license are still refreshed, in a separate transaction.
        """
        return await self._commit(package, release, uplink_id, advance=True)

    async def register_local_package(self, package: Package, release: Release) -> Release:
        """Commit a directly published release. No uplink, no cursor."""
        return await self._commit(package, release, None, advance=False)

    async def _commit(
        self, package: Package, release: Release, uplink_id: int | None, *, advance: bool
    ) -> Release:
        try:
            async with self._transaction() as db:
                package_id = await self._upsert_package(db, package, uplink_id)
                release_id = await self._insert_release(db, package, package_id, release)
                if advance and uplink_id is not None:
                    await self._advance_cursor(db, uplink_id)
        except DuplicateRelease:
            await self._refresh_package(package, uplink_id)
            raise
        except aiosqlite.Error as exc:
            raise TransactionFailed(
                f"Commit of {package.name}@{release.version} failed: {exc}"
            ) from exc

        log.info(
            "release_committed",
            package=package.name,
            version=str(release.version),
            uplink_id=uplink_id,
            release_id=release_id,
        )
        return release.model_copy(update={"id": release_id, "package_id": package_id})

    async def _upsert_package(
        self, db: aiosqlite.Connection, package: Package, uplink_id: int | None
    ) -> int:
        cursor = await db.execute(
            "SELECT id FROM packages WHERE author = ? AND project = ? AND uplink_id IS ?",
            (package.author, package.project, uplink_id),
        )
        row = await cursor.fetchone()
        if row is not None:
            await db.execute(
                "UPDATE packages SET summary = ?, license = ? WHERE id = ?",
                (package.summary, package.license, row[0]),
            )
            return row[0]
        cursor = await db.execute(
            "INSERT INTO packages (author, project, summary, license, uplink_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (package.author, package.project, package.summary, package.license, uplink_id),
        )
        return _inserted_id(cursor)

    async def _insert_release(
        self, db: aiosqlite.Connection, package: Package, package_id: int, release: Release
    ) -> int:
        version = str(release.version)
        cursor = await db.execute(
            "SELECT 1 FROM releases WHERE package_id = ? AND version = ?",
            (package_id, version),
        )
        if await cursor.fetchone() is not None:
            raise DuplicateRelease(f"{package.name}@{version} is already in the catalog")
        cursor = await db.execute(
            "INSERT INTO releases (package_id, version, major, minor, patch, published_at, "
            "manifest, readme, docs, content_hash) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                package_id,
                version,
                *release.version,
                release.published_at,
                release.manifest,
                release.readme,
                release.docs,
                release.content_hash,
            ),
        )
        return _inserted_id(cursor)

    async def _refresh_package(self, package: Package, uplink_id: int | None) -> None:
        try:
            async with self._transaction() as db:
                await db.execute(
                    "UPDATE packages SET summary = ?, license = ? "
                    "WHERE author = ? AND project = ? AND uplink_id IS ?",
                    (package.summary, package.license, package.author, package.project, uplink_id),
                )
        except aiosqlite.Error:
            log.warning("package_refresh_error", package=package.name, exc_info=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_package(
        self, author: str, project: str, uplink_id: int | None = None
    ) -> Package | None:
        row = await self._fetchone(
            "SELECT id, author, project, summary, license, uplink_id FROM packages "
            "WHERE author = ? AND project = ? AND uplink_id IS ?",
            (author, project, uplink_id),
        )
        if row is None:
            return None
        return Package(
            id=row[0],
            author=row[1],
            project=row[2],
            summary=row[3],
            license=row[4],
            uplink_id=row[5],
        )

    async def get_release(self, author: str, project: str, version: Version) -> Release | None:
        """The earliest committed release of ``author/project@version`` from any source."""
        row = await self._fetchone(
            f"SELECT {_RELEASE_COLUMNS} FROM releases AS r "
            "INNER JOIN packages AS p ON p.id = r.package_id "
            "WHERE p.author = ? AND p.project = ? AND r.version = ? ORDER BY r.id LIMIT 1",
            (author, project, str(version)),
        )
        return _release_from_row(row) if row is not None else None

    async def count_releases(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM releases")
        return row[0]

    async def releases_json(self, author: str, project: str) -> dict[str, int]:
        """``releases.json``: version to publish time, sorted by version."""
        rows = await self._fetchall(
            "SELECT r.version, r.published_at FROM releases AS r "
            "INNER JOIN packages AS p ON p.id = r.package_id "
            "WHERE p.author = ? AND p.project = ? "
            "ORDER BY r.major, r.minor, r.patch, r.id DESC",
            (author, project),
        )
        return {version: published_at for version, published_at in rows}

    async def endpoint_json(
        self, author: str, project: str, version: Version, public_url: str
    ) -> dict[str, str] | None:
        """``endpoint.json``: where to download the archive and its SHA-1."""
        release = await self.get_release(author, project, version)
        if release is None:
            return None
        return {
            "url": f"{public_url.rstrip('/')}/artifacts/{author}/{project}/{version}.zip",
            "hash": release.content_hash,
        }

    async def all_packages(self) -> dict[str, list[str]]:
        rows = await self._fetchall(
            "SELECT DISTINCT p.author || '/' || p.project, r.version FROM packages AS p "
            "INNER JOIN releases AS r ON p.id = r.package_id"
        )
        listing: dict[str, list[str]] = {}
        for name, version in rows:
            listing.setdefault(name, []).append(version)
        return {name: sort_versions(versions) for name, versions in sorted(listing.items())}

    async def all_packages_since(self, index: int) -> list[str]:
        """Release events after ``index``, newest first, as ``author/project@version``."""
        rows = await self._fetchall(
            "SELECT p.author || '/' || p.project || '@' || r.version FROM packages AS p "
            "INNER JOIN releases AS r ON p.id = r.package_id "
            "WHERE r.id > ? ORDER BY r.id DESC",
            (index,),
        )
        return [row[0] for row in rows]

    async def package_summaries(self) -> list[dict[str, str]]:
        """Latest release of every package with its summary and license."""
        rows = await self._fetchall(
            "SELECT p.author || '/' || p.project, p.summary, p.license, r.version "
            "FROM packages AS p INNER JOIN releases AS r ON p.id = r.package_id "
            "WHERE r.id IN (SELECT MAX(id) FROM releases GROUP BY package_id) "
            "ORDER BY p.author, p.project, p.id"
        )
        return [
            {"name": name, "summary": summary, "license": license_, "version": version}
            for name, summary, license_, version in rows
        ]
