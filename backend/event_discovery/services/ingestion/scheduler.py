"""
Ingestion scheduler.

Accepts one-off and recurring fetch jobs, answers "run now" triggers and
reports recent run history. Recurring rules are APScheduler cron jobs that
enqueue into the durable job queue; the worker pool does the actual work.
"""
from typing import Any, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from event_discovery.core.clock import Clock, start_of_day, utcnow
from event_discovery.models.domain import (
    Backoff,
    FetchHistoryView,
    JobAccepted,
    JobRequest,
    JobTrigger,
    RecurringRule,
    TriggerResult,
)
from event_discovery.services.ingestion.persistence import PersistenceGateway
from event_discovery.services.ingestion.queue import JobQueue
from event_discovery.sources.registry import SourceRegistry

logger = structlog.get_logger(__name__)


class IngestionScheduler:
    """
    Front door for fetch jobs.

    Features:
    - One-off jobs with optional retry overrides
    - Cron-driven recurring rules per source
    - Manual "run now" that is a no-op when the source already ran today
    """

    def __init__(
        self,
        queue: JobQueue,
        gateway: PersistenceGateway,
        registry: SourceRegistry,
        clock: Clock = utcnow,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.queue = queue
        self.gateway = gateway
        self.registry = registry
        self._clock = clock
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._rules: dict[str, RecurringRule] = {}

    # =========================================================================
    # Enqueue
    # =========================================================================

    async def enqueue(self, request: JobRequest, trigger: JobTrigger = JobTrigger.API) -> JobAccepted:
        """
        Accept a job payload.

        With ``repeat`` set this registers a recurring rule instead of
        queueing a job.

        Raises:
            UnknownSourceError: no source is registered under the id
            ValueError: ``repeat`` is not a valid crontab expression
        """
        self.registry.get(request.source_id)

        if request.repeat:
            rule = self.add_recurring(
                request.source_id,
                request.repeat,
                params=request.params,
                attempts=request.attempts,
                backoff=request.backoff,
            )
            return JobAccepted(source_id=request.source_id, recurring=rule)

        job = await self.queue.enqueue(
            request.source_id,
            request.params,
            trigger=trigger,
            attempts=request.attempts,
            backoff=request.backoff,
        )
        return JobAccepted(source_id=request.source_id, job_id=job.id)

    def add_recurring(
        self,
        source_id: str,
        cron: str,
        params: Optional[dict[str, Any]] = None,
        attempts: Optional[int] = None,
        backoff: Optional[Backoff] = None,
    ) -> RecurringRule:
        """Register (or replace) a cron rule that enqueues jobs for a source."""
        trigger = CronTrigger.from_crontab(cron, timezone="UTC")
        rule_id = f"recurring:{source_id}:{cron}"

        job = self._scheduler.add_job(
            self._enqueue_recurring,
            trigger=trigger,
            id=rule_id,
            name=f"Recurring fetch for {source_id}",
            kwargs={
                "source_id": source_id,
                "params": params or {},
                "attempts": attempts,
                "backoff": backoff,
            },
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        rule = RecurringRule(
            id=rule_id,
            source_id=source_id,
            cron=cron,
            params=params or {},
            next_run_at=getattr(job, "next_run_time", None),
        )
        self._rules[rule_id] = rule
        logger.info("scheduler.recurring_added", rule_id=rule_id, source_id=source_id, cron=cron)
        return rule

    def schedule_all(self, cron: str) -> list[RecurringRule]:
        """Add a recurring rule for every configured source."""
        return [
            self.add_recurring(source.id, cron)
            for source in self.registry
            if source.configured
        ]

    async def _enqueue_recurring(
        self,
        source_id: str,
        params: dict[str, Any],
        attempts: Optional[int],
        backoff: Optional[Backoff],
    ) -> None:
        try:
            active = await self.queue.find_active(source_id)
            if active is not None:
                logger.info("scheduler.recurring_skipped", source_id=source_id, active_job_id=active.id)
                return
            await self.queue.enqueue(
                source_id,
                params,
                trigger=JobTrigger.RECURRING,
                attempts=attempts,
                backoff=backoff,
            )
        except Exception as e:
            logger.error("scheduler.recurring_failed", source_id=source_id, error=str(e))

    # =========================================================================
    # Trigger
    # =========================================================================

    async def trigger_run(
        self,
        source_id: str,
        force: bool = False,
        params: Optional[dict[str, Any]] = None,
    ) -> TriggerResult:
        """
        Run a source now.

        Without ``force``, a source that already completed a successful run
        today (UTC) is not fetched again; the previous run's time is returned
        instead.
        """
        self.registry.get(source_id)

        if not force:
            last = await self.gateway.last_successful_run(source_id, since=start_of_day(self._clock()))
            if last is not None:
                logger.info("scheduler.trigger_skipped", source_id=source_id, last_run_at=last.started_at)
                return TriggerResult(
                    source_id=source_id,
                    triggered=False,
                    last_run_at=last.started_at,
                    message="Already fetched today. Use force=true to fetch again.",
                )

        active = await self.queue.find_active(source_id)
        if active is not None:
            return TriggerResult(
                source_id=source_id,
                triggered=False,
                job_id=active.id,
                message=f"A fetch job is already {active.state}",
            )

        job = await self.queue.enqueue(source_id, params, trigger=JobTrigger.MANUAL)
        return TriggerResult(
            source_id=source_id,
            triggered=True,
            job_id=job.id,
            message="Fetch job queued",
        )

    # =========================================================================
    # Lifecycle & status
    # =========================================================================

    def start(self) -> None:
        if self._scheduler.running:
            logger.warning("scheduler.already_running")
            return
        self._scheduler.start()
        logger.info("scheduler.started", rules=len(self._rules))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("scheduler.stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def recurring_rules(self) -> list[RecurringRule]:
        rules = []
        for rule in self._rules.values():
            job = self._scheduler.get_job(rule.id)
            next_run_at = getattr(job, "next_run_time", None) if job else None
            rules.append(rule.model_copy(update={"next_run_at": next_run_at}))
        return rules

    async def status(self, limit: int = 10, source_id: Optional[str] = None) -> dict:
        """Recent run history, newest first, plus the recurring rules."""
        runs = await self.gateway.recent_runs(limit=limit, source_id=source_id)
        return {
            "running": self.is_running,
            "recurring": [rule.model_dump(mode="json") for rule in self.recurring_rules()],
            "recent_runs": [FetchHistoryView.model_validate(run) for run in runs],
        }
