"""
Ingestion worker.

Drives one source through authenticate -> fetch -> transform -> stage ->
promote for a single job, then writes exactly one fetch history row.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from event_discovery.core.clock import Clock, utcnow
from event_discovery.models.database import DBFetchJob
from event_discovery.models.domain import JobState, RunStatus
from event_discovery.services.ingestion.deduplicator import Deduplicator
from event_discovery.services.ingestion.errors import (
    ConfigError,
    HistoryWriteError,
    IngestionError,
    JobTimeoutError,
    PersistenceError,
    ValidationError,
)
from event_discovery.services.ingestion.persistence import PersistenceGateway, RunCounts
from event_discovery.services.ingestion.queue import JobQueue
from event_discovery.sources.base import EventSource, RawItem
from event_discovery.sources.registry import SourceRegistry

logger = structlog.get_logger(__name__)


@dataclass
class RunStats:
    """Counters and item errors accumulated over one run."""
    events_found: int = 0
    events_processed: int = 0
    events_approved: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add_error(
        self,
        error: IngestionError,
        external_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        entry = error.to_dict()
        if external_id is not None:
            entry["external_id"] = external_id
        if stage is not None:
            entry["stage"] = stage
        self.errors.append(entry)

    def counts(self) -> RunCounts:
        return RunCounts(
            events_found=self.events_found,
            events_processed=self.events_processed,
            events_approved=self.events_approved,
        )


@dataclass
class RunOutcome:
    source_id: str
    status: RunStatus
    stats: RunStats
    error: Optional[IngestionError] = None
    history_id: Optional[int] = None
    job_id: Optional[int] = None


def classify(stats: RunStats, error: Optional[IngestionError]) -> RunStatus:
    """failed if a whole-job step raised, partial on item errors, else success."""
    if error is not None:
        return RunStatus.FAILED
    if stats.errors:
        return RunStatus.PARTIAL
    return RunStatus.SUCCESS


class IngestionWorker:
    """Executes fetch jobs against registered sources."""

    def __init__(
        self,
        registry: SourceRegistry,
        gateway: PersistenceGateway,
        deduplicator: Optional[Deduplicator] = None,
        timeout_seconds: float = 300.0,
        clock: Clock = utcnow,
    ):
        self.registry = registry
        self.gateway = gateway
        self.deduplicator = deduplicator if deduplicator is not None else Deduplicator()
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def execute(
        self,
        source_id: str,
        params: Optional[dict[str, Any]] = None,
        job_id: Optional[int] = None,
    ) -> RunOutcome:
        """
        Run one job execution.

        Whole-job failures are returned on the outcome rather than raised,
        so the history row is always written.
        """
        log = logger.bind(source_id=source_id, job_id=job_id)
        started_at = self._clock()
        stats = RunStats()
        error: Optional[IngestionError] = None

        log.info("worker.run_started")
        try:
            source = self.registry.get(source_id)
            await asyncio.wait_for(
                self._run(source, params or {}, stats, log),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = JobTimeoutError(
                f"job exceeded {self.timeout_seconds}s",
                {"source": source_id, "timeout_seconds": self.timeout_seconds},
            )
        except IngestionError as e:
            error = e
        except Exception as e:
            log.exception("worker.unexpected_error")
            error = IngestionError(str(e) or type(e).__name__, {"type": type(e).__name__})

        status = classify(stats, error)
        error_details: dict[str, Any] = {}
        if stats.errors:
            error_details["errors"] = stats.errors
        if error is not None:
            error_details["job_error"] = error.to_dict()

        history = await self.gateway.record_run(
            source_id=source_id,
            started_at=started_at,
            completed_at=self._clock(),
            status=status,
            counts=stats.counts(),
            error_details=error_details or None,
        )

        log_method = log.warning if status != RunStatus.SUCCESS else log.info
        log_method(
            "worker.run_finished",
            status=status.value,
            events_found=stats.events_found,
            events_processed=stats.events_processed,
            events_approved=stats.events_approved,
            item_errors=len(stats.errors),
            error=error.error_code if error else None,
        )

        return RunOutcome(
            source_id=source_id,
            status=status,
            stats=stats,
            error=error,
            history_id=history.id,
            job_id=job_id,
        )

    async def _run(self, source: EventSource, params: dict[str, Any], stats: RunStats, log) -> None:
        try:
            await source.authenticate()
        except ConfigError as e:
            log.warning("worker.source_not_configured", detail=e.detail)

        items = await source.fetch_events(params)
        stats.events_found = len(items)

        for item in items:
            await self._process_item(source, item, stats)

    async def _process_item(self, source: EventSource, item: RawItem, stats: RunStats) -> None:
        """
        Stage and promote one item. Item-level errors are recorded, not raised.

        A record that was staged but failed promotion counts as processed;
        the next run promotes it from the existing staging row.
        """
        if self.deduplicator.seen(source.id, item.external_id):
            stats.events_processed += 1
            return

        try:
            event = source.transform(item)
            staged = await self.gateway.ensure_staged(
                source_id=source.id,
                external_id=item.external_id,
                raw_payload=item.raw_payload,
                canonical_payload=event.model_dump(mode="json"),
                confidence_score=source.confidence(item),
                auto_approve=source.auto_approve,
            )
        except Exception as e:
            self._record_item_error(source, item, stats, e, stage="stage")
            return

        stats.events_processed += 1
        try:
            promotion = await self.gateway.promote(staged.record, source.auto_approve)
        except Exception as e:
            self._record_item_error(source, item, stats, e, stage="promote")
            return

        if promotion.created and promotion.approved:
            stats.events_approved += 1
        self.deduplicator.remember(source.id, item.external_id)

    def _record_item_error(
        self,
        source: EventSource,
        item: RawItem,
        stats: RunStats,
        error: Exception,
        stage: str,
    ) -> None:
        """Record a failed item; job-level ingestion errors still abort the run."""
        if isinstance(error, IngestionError):
            if error.job_level:
                raise error
            logger.warning(
                "worker.item_failed",
                source_id=source.id,
                external_id=item.external_id,
                stage=stage,
                error=error.error_code,
                detail=error.detail,
            )
        else:
            logger.exception(
                "worker.item_crashed",
                source_id=source.id,
                external_id=item.external_id,
                stage=stage,
            )
            wrapper = PersistenceError if stage == "promote" else ValidationError
            error = wrapper(
                str(error) or type(error).__name__,
                {"type": type(error).__name__},
            )
        stats.add_error(error, item.external_id, stage=stage)


class WorkerPool:
    """
    Fixed number of asyncio tasks pulling jobs from the queue.

    Each task claims a job, executes it and settles it, then polls again.
    """

    def __init__(
        self,
        queue: JobQueue,
        worker: IngestionWorker,
        concurrency: int = 2,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.worker = worker
        self.concurrency = concurrency
        self.poll_interval = poll_interval

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self.jobs_completed = 0

    async def run_once(self) -> Optional[RunOutcome]:
        """
        Claim and execute a single job. Returns None if nothing was runnable.

        The claimed job is always settled, so a run whose history could not
        be written goes back to the queue instead of holding the source's
        running slot.
        """
        job = await self.queue.claim_next()
        if job is None:
            return None

        try:
            outcome = await self.worker.execute(job.source_id, job.params, job_id=job.id)
        except Exception as e:
            logger.exception("worker_pool.execute_failed", job_id=job.id, source_id=job.source_id)
            error = e if isinstance(e, HistoryWriteError) else HistoryWriteError(
                str(e) or type(e).__name__,
                {"source_id": job.source_id, "type": type(e).__name__},
            )
            outcome = RunOutcome(
                source_id=job.source_id,
                status=RunStatus.FAILED,
                stats=RunStats(),
                error=error,
                job_id=job.id,
            )

        await self.queue.settle(job.id, outcome.status, outcome.error)
        self.jobs_completed += 1
        return outcome

    async def drain(self, job_id: int, sleep=asyncio.sleep) -> DBFetchJob:
        """Work the queue until the given job reaches a terminal state."""
        while True:
            job = await self.queue.get(job_id)
            if job is None:
                raise LookupError(f"fetch job {job_id} does not exist")
            if JobState(job.state).is_terminal:
                return job

            outcome = await self.run_once()
            if outcome is None:
                await sleep(self.poll_interval)

    def start(self) -> None:
        if self._running:
            logger.warning("worker_pool.already_running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(n), name=f"ingestion-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info("worker_pool.started", concurrency=self.concurrency)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool.stopped", jobs_completed=self.jobs_completed)

    async def _loop(self, worker_number: int) -> None:
        while self._running:
            try:
                outcome = await self.run_once()
            except Exception:
                logger.exception("worker_pool.iteration_failed", worker=worker_number)
                outcome = None

            if outcome is None:
                await asyncio.sleep(self.poll_interval)

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "concurrency": self.concurrency,
            "jobs_completed": self.jobs_completed,
            "deduplicator": self.worker.deduplicator.get_status(),
        }
