"""
SQLAlchemy database models for the event discovery pipeline.
Uses SQLAlchemy 2.0 async patterns.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from event_discovery.models.domain import JobState, ModerationStatus, StagingStatus


# =============================================================================
# Base
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


# =============================================================================
# Staging & Discovered Events
# =============================================================================

class DBStagingRecord(Base):
    """First landing of an ingested item. One row per (source_id, external_id)."""
    __tablename__ = "events_staging"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    canonical_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StagingStatus.PENDING.value
    )
    confidence_score: Mapped[float] = mapped_column(Float, default=0.75)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    discovered_event: Mapped[Optional["DBDiscoveredEvent"]] = relationship(
        back_populates="staging_record", uselist=False
    )

    # The dedup key; the authoritative guard under concurrent workers
    __table_args__ = (
        UniqueConstraint("source_id", "external_id", name="uq_events_staging_source_external"),
        Index("ix_events_staging_status", "status"),
    )


class DBDiscoveredEvent(Base):
    """Public projection of a staged event."""
    __tablename__ = "discovered_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staging_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events_staging.id"), nullable=False, unique=True
    )
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)

    venue_name: Mapped[Optional[str]] = mapped_column(String(255))
    venue_address: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    image_url: Mapped[Optional[str]] = mapped_column(Text)
    external_url: Mapped[Optional[str]] = mapped_column(Text)
    cost_type: Mapped[str] = mapped_column(String(20), default="free")
    price_amount: Mapped[Optional[float]] = mapped_column(Float)
    price_currency: Mapped[Optional[str]] = mapped_column(String(3))
    quality_score: Mapped[float] = mapped_column(Float, default=0.75)

    moderation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ModerationStatus.PENDING.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    staging_record: Mapped["DBStagingRecord"] = relationship(back_populates="discovered_event")

    __table_args__ = (
        UniqueConstraint(
            "source_id", "external_id", name="uq_discovered_events_source_external"
        ),
        Index("ix_discovered_events_moderation", "moderation_status"),
        Index("ix_discovered_events_start_time", "start_time"),
    )


# =============================================================================
# Fetch History
# =============================================================================

class DBFetchHistory(Base):
    """Append-only audit log, one row per job execution."""
    __tablename__ = "fetch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    events_found: Mapped[int] = mapped_column(Integer, default=0)
    events_processed: Mapped[int] = mapped_column(Integer, default=0)
    events_approved: Mapped[Optional[int]] = mapped_column(Integer)
    execution_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    error_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("ix_fetch_history_source_started", "source_id", "started_at"),
        Index("ix_fetch_history_started", "started_at"),
    )


# =============================================================================
# Job Queue
# =============================================================================

class DBFetchJob(Base):
    """Durable fetch job. Terminal rows are kept as the job archive."""
    __tablename__ = "fetch_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    params: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=JobState.QUEUED.value)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")

    attempt: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    backoff_type: Mapped[str] = mapped_column(String(20), default="exponential")
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, default=2000)
    backoff_multiplier: Mapped[float] = mapped_column(Float, default=2.0)

    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    # Single-flight per source, enforced by storage for multi-process workers
    __table_args__ = (
        Index("ix_fetch_jobs_state_available", "state", "available_at"),
        Index(
            "uq_fetch_jobs_running_source",
            "source_id",
            unique=True,
            sqlite_where=text("state = 'running'"),
            postgresql_where=text("state = 'running'"),
        ),
    )


# =============================================================================
# Database Connection
# =============================================================================

class Database:
    """Database connection manager."""

    def __init__(self, database_url: str, echo: bool = False):
        self.engine = create_async_engine(
            database_url,
            echo=echo,
        )
        self.async_session = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    async def create_tables(self):
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self):
        """Drop all tables (use with caution!)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self):
        await self.engine.dispose()
