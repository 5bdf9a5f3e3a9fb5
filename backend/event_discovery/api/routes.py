"""
FastAPI routes for the event discovery ingestion API.
"""
from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Query, Request, status

from event_discovery.api.auth import require_api_key
from event_discovery.api.errors import InvalidScheduleError, NotFoundError
from event_discovery.models.domain import (
    EventStats,
    FetchHistoryView,
    FetchJobView,
    JobAccepted,
    JobRequest,
    JobState,
    RecurringRule,
    SourceInfo,
    TriggerRequest,
    TriggerResult,
)
from event_discovery.services.ingestion.runtime import IngestionRuntime

logger = structlog.get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_api_key)])


def get_runtime(request: Request) -> IngestionRuntime:
    """Dependency to get the process-wide ingestion runtime."""
    return request.app.state.runtime


RuntimeDep = Annotated[IngestionRuntime, Depends(get_runtime)]


# ============================================================================
# Sources
# ============================================================================


@router.get("/sources", response_model=list[SourceInfo])
async def list_sources(runtime: RuntimeDep):
    """Registered sources with their trust tier and rate-limiter status."""
    return [source.describe() for source in runtime.registry]


@router.post("/sources/{source_id}/run", response_model=TriggerResult)
async def run_source(
    source_id: str,
    runtime: RuntimeDep,
    body: Annotated[Optional[TriggerRequest], Body()] = None,
):
    """
    Run a source now.

    Without ``force`` this is a no-op when the source already completed a
    successful run today; the response carries that run's timestamp.
    """
    body = body or TriggerRequest()
    result = await runtime.scheduler.trigger_run(source_id, force=body.force, params=body.params)
    logger.info(
        "api.source_triggered",
        source_id=source_id,
        force=body.force,
        triggered=result.triggered,
    )
    return result


# ============================================================================
# Jobs
# ============================================================================


@router.post("/jobs", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_job(payload: JobRequest, runtime: RuntimeDep):
    """
    Enqueue a fetch job.

    A payload with ``repeat`` registers a recurring rule instead.
    """
    try:
        return await runtime.scheduler.enqueue(payload)
    except ValueError as e:
        raise InvalidScheduleError(str(e), {"repeat": payload.repeat}) from e


@router.get("/jobs", response_model=list[FetchJobView])
async def list_jobs(
    runtime: RuntimeDep,
    limit: int = Query(default=20, ge=1, le=200),
    source_id: Optional[str] = None,
    state: Optional[JobState] = None,
):
    """Most recent jobs first."""
    return await runtime.queue.list_jobs(limit=limit, source_id=source_id, state=state)


@router.get("/jobs/{job_id}", response_model=FetchJobView)
async def get_job(job_id: int, runtime: RuntimeDep):
    job = await runtime.queue.get(job_id)
    if job is None:
        raise NotFoundError(f"Fetch job {job_id} not found", {"job_id": job_id})
    return job


@router.get("/recurring", response_model=list[RecurringRule])
async def list_recurring(runtime: RuntimeDep):
    return runtime.scheduler.recurring_rules()


# ============================================================================
# Status
# ============================================================================


@router.get("/fetch-history", response_model=list[FetchHistoryView])
async def fetch_history(
    runtime: RuntimeDep,
    limit: int = Query(default=10, ge=1, le=100),
    source_id: Optional[str] = None,
):
    """Recent job executions, newest first."""
    return await runtime.gateway.recent_runs(limit=limit, source_id=source_id)


@router.get("/events/stats", response_model=EventStats)
async def event_stats(runtime: RuntimeDep):
    """Discovered events by moderation status."""
    return await runtime.gateway.event_stats()
