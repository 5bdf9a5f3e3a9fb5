"""
Persistence gateway.

Writes staging records, promotes them into discovered events and appends
fetch history. Every item is written in its own session so one failing
item never poisons the rest of the batch.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from event_discovery.core.clock import Clock, utcnow
from event_discovery.models.database import (
    Database,
    DBDiscoveredEvent,
    DBFetchHistory,
    DBStagingRecord,
)
from event_discovery.models.domain import (
    CanonicalEvent,
    EventStats,
    ModerationStatus,
    RunStatus,
    StagingStatus,
)
from event_discovery.services.ingestion.errors import HistoryWriteError, PersistenceError

logger = structlog.get_logger(__name__)


@dataclass
class StageResult:
    inserted: bool
    record: DBStagingRecord

    @property
    def id(self) -> int:
        return self.record.id


@dataclass
class PromotionResult:
    created: bool
    event: DBDiscoveredEvent

    @property
    def approved(self) -> bool:
        return self.event.moderation_status == ModerationStatus.APPROVED.value


@dataclass
class RunCounts:
    events_found: int = 0
    events_processed: int = 0
    events_approved: Optional[int] = None


class PersistenceGateway:
    """Storage operations used by the worker and the status surface."""

    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self._clock = clock

    # =========================================================================
    # Staging
    # =========================================================================

    async def ensure_staged(
        self,
        source_id: str,
        external_id: str,
        raw_payload: dict[str, Any],
        canonical_payload: dict[str, Any],
        confidence_score: float = 0.75,
        auto_approve: bool = False,
    ) -> StageResult:
        """
        Insert a staging record unless one already exists for the key.

        A unique-constraint violation means another worker staged the same
        key first; that counts as "already exists", not as a failure.

        Raises:
            PersistenceError: the store rejected the write for another reason
        """
        context = {"source_id": source_id, "external_id": external_id}
        try:
            async with self.database.async_session() as session:
                existing = await self._find_staged(session, source_id, external_id)
                if existing is not None:
                    return StageResult(inserted=False, record=existing)

                record = DBStagingRecord(
                    source_id=source_id,
                    external_id=external_id,
                    raw_payload=raw_payload,
                    canonical_payload=canonical_payload,
                    status=(StagingStatus.APPROVED if auto_approve else StagingStatus.PENDING).value,
                    confidence_score=confidence_score,
                    created_at=self._clock(),
                )
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    existing = await self._find_staged(session, source_id, external_id)
                    if existing is None:
                        raise PersistenceError("staging insert rejected by constraint", context)
                    logger.debug("persistence.stage_race_resolved", **context)
                    return StageResult(inserted=False, record=existing)

                return StageResult(inserted=True, record=record)

        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to stage item: {e}", context) from e

    async def _find_staged(self, session, source_id: str, external_id: str) -> Optional[DBStagingRecord]:
        result = await session.execute(
            select(DBStagingRecord).where(
                DBStagingRecord.source_id == source_id,
                DBStagingRecord.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Promotion
    # =========================================================================

    async def promote(self, record: DBStagingRecord, auto_approve: bool) -> PromotionResult:
        """
        Project a staging record into a discovered event.

        Idempotent: a record that already has a discovered event returns it.
        """
        context = {"source_id": record.source_id, "external_id": record.external_id}
        try:
            event = CanonicalEvent.model_validate(record.canonical_payload)
        except ValueError as e:
            raise PersistenceError(f"staged payload is not a canonical event: {e}", context) from e

        moderation = ModerationStatus.APPROVED if auto_approve else ModerationStatus.PENDING

        try:
            async with self.database.async_session() as session:
                existing = await self._find_discovered(session, record)
                if existing is not None:
                    return PromotionResult(created=False, event=existing)

                row = DBDiscoveredEvent(
                    staging_id=record.id,
                    source_id=record.source_id,
                    external_id=record.external_id,
                    title=event.title,
                    description=event.description,
                    category=event.category,
                    tags=event.tags,
                    start_time=event.start_time,
                    end_time=event.end_time,
                    venue_name=event.venue.name,
                    venue_address=event.venue.address,
                    latitude=event.venue.lat,
                    longitude=event.venue.lng,
                    image_url=event.image_url,
                    external_url=event.external_url,
                    cost_type=event.price.type.value,
                    price_amount=event.price.amount,
                    price_currency=event.price.currency,
                    quality_score=record.confidence_score,
                    moderation_status=moderation.value,
                    is_active=True,
                    created_at=self._clock(),
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    existing = await self._find_discovered(session, record)
                    if existing is None:
                        raise PersistenceError("promotion rejected by constraint", context)
                    return PromotionResult(created=False, event=existing)

                return PromotionResult(created=True, event=row)

        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to promote item: {e}", context) from e

    async def _find_discovered(self, session, record: DBStagingRecord) -> Optional[DBDiscoveredEvent]:
        result = await session.execute(
            select(DBDiscoveredEvent).where(
                (DBDiscoveredEvent.staging_id == record.id)
                | (
                    (DBDiscoveredEvent.source_id == record.source_id)
                    & (DBDiscoveredEvent.external_id == record.external_id)
                )
            )
        )
        return result.scalars().first()

    # =========================================================================
    # Fetch History
    # =========================================================================

    async def record_run(
        self,
        source_id: str,
        started_at: datetime,
        completed_at: datetime,
        status: RunStatus,
        counts: RunCounts,
        error_details: Optional[dict[str, Any]] = None,
    ) -> DBFetchHistory:
        """Append the single history row for one job execution."""
        row = DBFetchHistory(
            source_id=source_id,
            started_at=started_at,
            completed_at=completed_at,
            status=status.value,
            events_found=counts.events_found,
            events_processed=counts.events_processed,
            events_approved=counts.events_approved,
            execution_time_ms=max(0, int((completed_at - started_at).total_seconds() * 1000)),
            error_details=error_details or None,
            created_at=self._clock(),
        )
        try:
            async with self.database.async_session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise HistoryWriteError(
                f"failed to record run: {e}",
                {"source_id": source_id, "status": status.value},
            ) from e

        logger.info(
            "persistence.run_recorded",
            source_id=source_id,
            status=status.value,
            events_found=counts.events_found,
            events_processed=counts.events_processed,
        )
        return row

    async def recent_runs(self, limit: int = 10, source_id: Optional[str] = None) -> list[DBFetchHistory]:
        """Most recent history rows, newest first."""
        query = select(DBFetchHistory)
        if source_id:
            query = query.where(DBFetchHistory.source_id == source_id)
        query = query.order_by(DBFetchHistory.started_at.desc(), DBFetchHistory.id.desc()).limit(limit)

        async with self.database.async_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def last_successful_run(self, source_id: str, since: datetime) -> Optional[DBFetchHistory]:
        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBFetchHistory)
                .where(
                    DBFetchHistory.source_id == source_id,
                    DBFetchHistory.status == RunStatus.SUCCESS.value,
                    DBFetchHistory.started_at >= since,
                )
                .order_by(DBFetchHistory.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    # =========================================================================
    # Stats
    # =========================================================================

    async def event_stats(self) -> EventStats:
        """Discovered-event counts by moderation status."""
        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBDiscoveredEvent.moderation_status, func.count(DBDiscoveredEvent.id))
                .group_by(DBDiscoveredEvent.moderation_status)
            )
            counts = dict(result.all())

        total = sum(counts.values())
        approved = counts.get(ModerationStatus.APPROVED.value, 0)
        return EventStats(
            total_events=total,
            pending_events=counts.get(ModerationStatus.PENDING.value, 0),
            approved_events=approved,
            rejected_events=counts.get(ModerationStatus.REJECTED.value, 0),
            approval_rate=round(approved / total * 100, 1) if total else 0.0,
        )
