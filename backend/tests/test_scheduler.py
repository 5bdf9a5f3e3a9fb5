"""
Tests for the ingestion scheduler: triggers, enqueue payloads and
recurring rules.
"""
from datetime import timedelta

import pytest

from event_discovery.models.domain import Backoff, BackoffType, JobRequest, JobState, RunStatus
from event_discovery.services.ingestion.errors import UnknownSourceError
from event_discovery.services.ingestion.persistence import RunCounts
from event_discovery.services.ingestion.scheduler import IngestionScheduler
from event_discovery.sources.registry import SourceRegistry

from conftest import OtherStubSource, StubSource


@pytest.fixture
def source():
    return StubSource()


@pytest.fixture
def scheduler(queue, gateway, clock, source):
    return IngestionScheduler(queue, gateway, SourceRegistry([source, OtherStubSource()]), clock=clock)


async def record(gateway, started, status=RunStatus.SUCCESS, source_id="stub"):
    return await gateway.record_run(source_id, started, started, status, RunCounts())


class TestTrigger:

    @pytest.mark.asyncio
    async def test_same_day_success_is_a_no_op(self, scheduler, gateway, queue, clock, source):
        earlier = clock() - timedelta(hours=2)
        await record(gateway, earlier)

        result = await scheduler.trigger_run("stub", force=False)

        assert result.triggered is False
        assert result.last_run_at == earlier
        assert result.job_id is None
        assert await queue.list_jobs() == []
        assert source.authenticate_calls == 0
        assert source.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_force_runs_anyway(self, scheduler, gateway, clock):
        await record(gateway, clock() - timedelta(hours=1))

        result = await scheduler.trigger_run("stub", force=True)

        assert result.triggered is True
        assert result.job_id is not None

    @pytest.mark.asyncio
    async def test_previous_day_or_failed_runs_do_not_block(self, scheduler, gateway, clock):
        await record(gateway, clock() - timedelta(days=1))
        await record(gateway, clock() - timedelta(hours=1), status=RunStatus.FAILED)

        result = await scheduler.trigger_run("stub")

        assert result.triggered is True

    @pytest.mark.asyncio
    async def test_active_job_is_reused(self, scheduler):
        first = await scheduler.trigger_run("stub", params={"days": 1})
        second = await scheduler.trigger_run("stub", force=True)

        assert second.triggered is False
        assert second.job_id == first.job_id

    @pytest.mark.asyncio
    async def test_unknown_source(self, scheduler):
        with pytest.raises(UnknownSourceError):
            await scheduler.trigger_run("nope")


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_one_off_job_with_overrides(self, scheduler, queue):
        accepted = await scheduler.enqueue(
            JobRequest(
                source_id="stub",
                params={"days": 3},
                attempts=5,
                backoff=Backoff(type=BackoffType.FIXED, delay=1000),
            )
        )

        job = await queue.get(accepted.job_id)
        assert accepted.recurring is None
        assert job.trigger == "api"
        assert job.params == {"days": 3}
        assert job.max_attempts == 5
        assert job.backoff_type == "fixed"
        assert job.backoff_delay_ms == 1000

    @pytest.mark.asyncio
    async def test_repeat_registers_recurring_rule(self, scheduler, queue):
        accepted = await scheduler.enqueue(JobRequest(source_id="stub", repeat="0 */6 * * *"))

        assert accepted.job_id is None
        assert accepted.recurring.cron == "0 */6 * * *"
        assert [rule.source_id for rule in scheduler.recurring_rules()] == ["stub"]
        assert await queue.list_jobs() == []

    @pytest.mark.asyncio
    async def test_invalid_cron(self, scheduler):
        with pytest.raises(ValueError):
            await scheduler.enqueue(JobRequest(source_id="stub", repeat="every six hours"))

    @pytest.mark.asyncio
    async def test_unknown_source(self, scheduler):
        with pytest.raises(UnknownSourceError):
            await scheduler.enqueue(JobRequest(source_id="nope"))


class TestRecurring:

    def test_schedule_all_configured_sources(self, scheduler):
        rules = scheduler.schedule_all("0 */6 * * *")
        assert sorted(rule.source_id for rule in rules) == ["other-stub", "stub"]

    def test_replacing_a_rule(self, scheduler):
        scheduler.add_recurring("stub", "0 */6 * * *")
        scheduler.add_recurring("stub", "0 */6 * * *", params={"days": 1})

        rules = scheduler.recurring_rules()
        assert len(rules) == 1
        assert rules[0].params == {"days": 1}

    @pytest.mark.asyncio
    async def test_recurring_fire_enqueues(self, scheduler, queue):
        await scheduler._enqueue_recurring("stub", {"days": 1}, None, None)

        jobs = await queue.list_jobs()
        assert len(jobs) == 1
        assert jobs[0].trigger == "recurring"

    @pytest.mark.asyncio
    async def test_recurring_fire_skips_when_active(self, scheduler, queue):
        await queue.enqueue("stub")
        await queue.claim_next()

        await scheduler._enqueue_recurring("stub", {}, None, None)

        jobs = await queue.list_jobs(source_id="stub")
        assert [j.state for j in jobs] == [JobState.RUNNING.value]

    @pytest.mark.asyncio
    async def test_status(self, scheduler, gateway, clock):
        await record(gateway, clock())
        scheduler.add_recurring("stub", "30 2 * * *")

        status = await scheduler.status(limit=5)

        assert status["running"] is False
        assert status["recurring"][0]["cron"] == "30 2 * * *"
        assert status["recent_runs"][0].source_id == "stub"
