"""
Durable SQL-backed fetch job queue.

Jobs live in ``fetch_jobs`` and move through
queued -> running -> succeeded | partial_failure | failed.
A failed job goes back to queued, delayed by its backoff, while it has
attempts left.
"""
import asyncio
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from event_discovery.core.clock import Clock, utcnow
from event_discovery.models.database import Database, DBFetchJob
from event_discovery.models.domain import Backoff, BackoffType, JobState, JobTrigger, RunStatus
from event_discovery.services.ingestion.errors import IngestionError
from event_discovery.services.ingestion.retry import RetryPolicy

logger = structlog.get_logger(__name__)

ACTIVE_STATES = (JobState.QUEUED.value, JobState.RUNNING.value)

RUN_STATUS_TO_STATE = {
    RunStatus.SUCCESS: JobState.SUCCEEDED,
    RunStatus.PARTIAL: JobState.PARTIAL_FAILURE,
    RunStatus.FAILED: JobState.FAILED,
}


class JobQueue:
    """
    Job queue with at most one running job per source.

    Claims are serialized in-process by a lock; across processes the partial
    unique index on running jobs rejects a second claim for the same source.
    """

    def __init__(
        self,
        database: Database,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Clock = utcnow,
    ):
        self.database = database
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._claim_lock = asyncio.Lock()

    async def enqueue(
        self,
        source_id: str,
        params: Optional[dict[str, Any]] = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        attempts: Optional[int] = None,
        backoff: Optional[Backoff] = None,
    ) -> DBFetchJob:
        """Add a job, runnable immediately."""
        policy = self.retry_policy.override(attempts=attempts, backoff=backoff)
        now = self._clock()
        job = DBFetchJob(
            source_id=source_id,
            params=params or {},
            state=JobState.QUEUED.value,
            trigger=trigger.value,
            attempt=0,
            max_attempts=policy.max_attempts,
            backoff_type=policy.backoff_type.value,
            backoff_delay_ms=policy.base_delay_ms,
            backoff_multiplier=policy.multiplier,
            available_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self.database.async_session() as session:
            session.add(job)
            await session.commit()

        logger.info("queue.enqueued", job_id=job.id, source_id=source_id, trigger=trigger.value)
        return job

    async def claim_next(self) -> Optional[DBFetchJob]:
        """
        Move the oldest runnable job to running and return it.

        Returns None when nothing is runnable: the queue is empty, every
        queued job is still backing off, or its source already has a job
        running.
        """
        async with self._claim_lock:
            now = self._clock()
            async with self.database.async_session() as session:
                running_sources = select(DBFetchJob.source_id).where(
                    DBFetchJob.state == JobState.RUNNING.value
                )
                result = await session.execute(
                    select(DBFetchJob)
                    .where(
                        DBFetchJob.state == JobState.QUEUED.value,
                        DBFetchJob.available_at <= now,
                        DBFetchJob.source_id.not_in(running_sources),
                    )
                    .order_by(DBFetchJob.available_at, DBFetchJob.id)
                    .limit(1)
                )
                job = result.scalar_one_or_none()
                if job is None:
                    return None

                try:
                    claimed = await session.execute(
                        update(DBFetchJob)
                        .where(DBFetchJob.id == job.id, DBFetchJob.state == JobState.QUEUED.value)
                        .values(
                            state=JobState.RUNNING.value,
                            attempt=DBFetchJob.attempt + 1,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if claimed.rowcount != 1:
                        await session.rollback()
                        return None
                    await session.commit()
                except IntegrityError:
                    # Another process holds the running slot for this source
                    await session.rollback()
                    logger.debug("queue.claim_conflict", job_id=job.id, source_id=job.source_id)
                    return None

                await session.refresh(job)

        logger.info(
            "queue.claimed",
            job_id=job.id,
            source_id=job.source_id,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
        )
        return job

    async def settle(
        self,
        job_id: int,
        status: RunStatus,
        error: Optional[IngestionError] = None,
    ) -> DBFetchJob:
        """
        Record the outcome of a claimed job.

        A failed run with a retryable error is requeued after its backoff
        while attempts remain; everything else is terminal.
        """
        async with self.database.async_session() as session:
            job = await session.get(DBFetchJob, job_id)
            if job is None:
                raise LookupError(f"fetch job {job_id} does not exist")

            now = self._clock()
            job.updated_at = now
            job.last_error = error.detail if error is not None else None
            state = RUN_STATUS_TO_STATE[status]

            policy = self.policy_for(job)
            if (
                state == JobState.FAILED
                and error is not None
                and error.retryable
                and policy.should_retry(job.attempt)
            ):
                delay = policy.delay_for(job.attempt)
                job.state = JobState.QUEUED.value
                job.available_at = now + delay
                logger.warning(
                    "queue.retry_scheduled",
                    job_id=job.id,
                    source_id=job.source_id,
                    attempt=job.attempt,
                    delay_ms=int(delay.total_seconds() * 1000),
                    error=error.error_code,
                )
            else:
                job.state = state.value
                logger.info(
                    "queue.settled",
                    job_id=job.id,
                    source_id=job.source_id,
                    state=job.state,
                    attempt=job.attempt,
                )

            await session.commit()
            return job

    def policy_for(self, job: DBFetchJob) -> RetryPolicy:
        """The retry policy a job was enqueued with."""
        return RetryPolicy(
            max_attempts=job.max_attempts,
            base_delay_ms=job.backoff_delay_ms,
            multiplier=job.backoff_multiplier,
            backoff_type=BackoffType(job.backoff_type),
        )

    async def requeue_running(self) -> int:
        """
        Return jobs left running by a dead process to the queue.

        Only safe while no worker of any process is running.
        """
        now = self._clock()
        async with self.database.async_session() as session:
            result = await session.execute(
                update(DBFetchJob)
                .where(DBFetchJob.state == JobState.RUNNING.value)
                .values(state=JobState.QUEUED.value, available_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount:
            logger.warning("queue.requeued_stale_jobs", count=result.rowcount)
        return result.rowcount

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, job_id: int) -> Optional[DBFetchJob]:
        async with self.database.async_session() as session:
            return await session.get(DBFetchJob, job_id)

    async def find_active(self, source_id: str) -> Optional[DBFetchJob]:
        """A queued or running job for the source, if any."""
        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBFetchJob)
                .where(DBFetchJob.source_id == source_id, DBFetchJob.state.in_(ACTIVE_STATES))
                .order_by(DBFetchJob.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_jobs(
        self,
        limit: int = 20,
        source_id: Optional[str] = None,
        state: Optional[JobState] = None,
    ) -> list[DBFetchJob]:
        query = select(DBFetchJob)
        if source_id:
            query = query.where(DBFetchJob.source_id == source_id)
        if state:
            query = query.where(DBFetchJob.state == state.value)
        query = query.order_by(DBFetchJob.id.desc()).limit(limit)

        async with self.database.async_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
