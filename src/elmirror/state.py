"""Application state wired once at startup and passed explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from elmirror.catalog import CatalogStore
from elmirror.content import ContentStore
from elmirror.delta import DeltaFetcher
from elmirror.fetcher import Fetcher
from elmirror.ingest import IngestionPipeline
from elmirror.metadata import MetadataFetcher
from elmirror.publish import Publisher
from elmirror.sync import SyncOrchestrator

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from elmirror.config import Settings


@dataclass
class AppState:
    settings: Settings
    http_client: httpx.AsyncClient
    catalog: CatalogStore
    content: ContentStore
    metadata: MetadataFetcher
    delta: DeltaFetcher
    pipeline: IngestionPipeline
    orchestrator: SyncOrchestrator
    publisher: Publisher


async def build_state(
    settings: Settings, db: aiosqlite.Connection, http_client: httpx.AsyncClient
) -> AppState:
    """Initialise the catalog, register configured uplinks and wire every component."""
    catalog = CatalogStore(db)
    await catalog.init_db()
    for uplink in settings.uplinks:
        await catalog.ensure_uplink(uplink.url)

    fetcher = Fetcher(http_client, settings.fetcher)
    content = ContentStore(fetcher, settings.artifacts.dir, settings.fetcher.origin_url_template)
    metadata = MetadataFetcher(fetcher, settings.sync.metadata_source)
    delta = DeltaFetcher(fetcher)
    pipeline = IngestionPipeline(catalog, content, metadata)
    orchestrator = SyncOrchestrator(
        catalog,
        delta,
        pipeline,
        advance_past_duplicates=settings.sync.advance_past_duplicates,
    )
    publisher = Publisher(catalog, content, settings.publish.hash_verification)
    return AppState(
        settings=settings,
        http_client=http_client,
        catalog=catalog,
        content=content,
        metadata=metadata,
        delta=delta,
        pipeline=pipeline,
        orchestrator=orchestrator,
        publisher=publisher,
    )
