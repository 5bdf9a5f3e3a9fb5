"""
Domain models for the event discovery pipeline.
These are the core business entities, independent of database/API representation.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================

class SourceType(str, Enum):
    """How a source obtains its data."""
    API = "api"
    SCRAPER = "scraper"
    RSS = "rss"
    WEBHOOK = "webhook"
    STATIC = "static"


class PriceType(str, Enum):
    FREE = "free"
    PAID = "paid"
    DONATION = "donation"
    VARIES = "varies"  # Provider gave no price signal


class StagingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModerationStatus(str, Enum):
    """Whether a discovered event is visible or awaiting review."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RunStatus(str, Enum):
    """Outcome of one job execution, as recorded in fetch history."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class JobState(str, Enum):
    """
    Lifecycle of a fetch job.

    queued -> running -> succeeded | partial_failure | failed
    failed -> queued while attempts remain.
    """
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.PARTIAL_FAILURE, JobState.FAILED)


class JobTrigger(str, Enum):
    MANUAL = "manual"
    RECURRING = "recurring"
    API = "api"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


# =============================================================================
# Canonical Event
# =============================================================================

class Venue(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class Price(BaseModel):
    type: PriceType = PriceType.FREE
    amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None


class CanonicalEvent(BaseModel):
    """The single normalized shape every source must produce."""
    title: str = Field(min_length=1)
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    venue: Venue = Field(default_factory=Venue)
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    external_url: Optional[str] = None
    price: Price = Field(default_factory=Price)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @model_validator(mode="after")
    def check_time_order(self) -> "CanonicalEvent":
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time precedes start_time")
        return self


# =============================================================================
# Job payloads
# =============================================================================

class Backoff(BaseModel):
    type: BackoffType = BackoffType.EXPONENTIAL
    delay: int = Field(default=2000, ge=0, description="Base delay in milliseconds")


class JobRequest(BaseModel):
    """Enqueue contract for fetch jobs."""
    source_id: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    repeat: Optional[str] = Field(
        default=None,
        description="Crontab expression; registers a recurring rule instead of a one-off job",
    )
    attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[Backoff] = None


class TriggerRequest(BaseModel):
    force: bool = False
    params: dict[str, Any] = Field(default_factory=dict)


class TriggerResult(BaseModel):
    source_id: str
    triggered: bool
    job_id: Optional[int] = None
    last_run_at: Optional[datetime] = None
    message: str


class RecurringRule(BaseModel):
    id: str
    source_id: str
    cron: str
    params: dict[str, Any] = Field(default_factory=dict)
    next_run_at: Optional[datetime] = None


class JobAccepted(BaseModel):
    """Response to an enqueue: a one-off job id or the recurring rule created."""
    source_id: str
    job_id: Optional[int] = None
    recurring: Optional[RecurringRule] = None


# =============================================================================
# Read models
# =============================================================================

class FetchJobView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: str
    params: dict[str, Any]
    attempt: int
    max_attempts: int
    state: JobState
    trigger: JobTrigger
    available_at: datetime
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class FetchHistoryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: str
    started_at: datetime
    completed_at: datetime
    status: RunStatus
    events_found: int
    events_processed: int
    events_approved: Optional[int] = None
    execution_time_ms: int
    error_details: Optional[dict[str, Any]] = None


class EventStats(BaseModel):
    total_events: int = 0
    pending_events: int = 0
    approved_events: int = 0
    rejected_events: int = 0
    approval_rate: float = 0.0


class SourceInfo(BaseModel):
    id: str
    name: str
    type: SourceType
    auto_approve: bool
    configured: bool
    rate_limit: dict[str, Any]
