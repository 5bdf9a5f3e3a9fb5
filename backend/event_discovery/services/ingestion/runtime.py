"""
Process-wide ingestion components.

Storage, HTTP client, source registry, queue, worker pool and scheduler are
constructed once here and injected everywhere else. Both the API process and
the CLI build their runtime through ``build_runtime``.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from event_discovery.config import Settings
from event_discovery.core.clock import Clock, utcnow
from event_discovery.models.database import Database
from event_discovery.services.ingestion.deduplicator import Deduplicator
from event_discovery.services.ingestion.persistence import PersistenceGateway
from event_discovery.services.ingestion.queue import JobQueue
from event_discovery.services.ingestion.retry import RetryPolicy
from event_discovery.services.ingestion.scheduler import IngestionScheduler
from event_discovery.services.ingestion.worker import IngestionWorker, WorkerPool
from event_discovery.sources.registry import SourceRegistry, build_registry

logger = structlog.get_logger(__name__)


@dataclass
class IngestionRuntime:
    settings: Settings
    database: Database
    http_client: httpx.AsyncClient
    registry: SourceRegistry
    gateway: PersistenceGateway
    queue: JobQueue
    worker: IngestionWorker
    pool: WorkerPool
    scheduler: IngestionScheduler

    async def start(self, workers: bool = True, recurring: bool = True) -> None:
        """Create tables, recover stale jobs and start background work."""
        await self.database.create_tables()
        await self.queue.requeue_running()

        if recurring and self.settings.scheduler_enabled:
            self.scheduler.schedule_all(self.settings.recurring_cron)
            self.scheduler.start()
        if workers:
            self.pool.start()

        logger.info(
            "runtime.started",
            sources=self.registry.ids(),
            workers=self.pool.is_running,
            scheduler=self.scheduler.is_running,
        )

    async def close(self) -> None:
        self.scheduler.shutdown()
        if self.pool.is_running:
            await self.pool.stop()
        await self.http_client.aclose()
        await self.database.dispose()
        logger.info("runtime.closed")


def build_runtime(
    settings: Settings,
    database: Optional[Database] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    registry: Optional[SourceRegistry] = None,
    clock: Clock = utcnow,
) -> IngestionRuntime:
    """Wire every ingestion component from settings."""
    database = database or Database(settings.database_url, echo=settings.debug)
    http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    if registry is None:
        registry = build_registry(settings, http_client)

    gateway = PersistenceGateway(database, clock=clock)
    queue = JobQueue(database, RetryPolicy.from_settings(settings.retry), clock=clock)
    worker = IngestionWorker(
        registry,
        gateway,
        Deduplicator(settings.dedup_cache_size),
        timeout_seconds=settings.job_timeout_seconds,
        clock=clock,
    )
    pool = WorkerPool(
        queue,
        worker,
        concurrency=settings.worker_concurrency,
        poll_interval=settings.worker_poll_interval_seconds,
    )
    scheduler = IngestionScheduler(queue, gateway, registry, clock=clock)

    return IngestionRuntime(
        settings=settings,
        database=database,
        http_client=http_client,
        registry=registry,
        gateway=gateway,
        queue=queue,
        worker=worker,
        pool=pool,
        scheduler=scheduler,
    )
