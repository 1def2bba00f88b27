"""Repositories for enrichment leases, failure markers and history."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.exceptions import EnrichmentInProgressError
from imagineer.database.models import EnrichmentFailure, EnrichmentHistory, EnrichmentLease
from imagineer.repositories.base_repository import BaseRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EnrichmentLeaseRepository(BaseRepository[EnrichmentLease]):
    """Job-scoped lease so only one enrichment run is in flight per job."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EnrichmentLease)

    async def get_for_job(self, job_id: UUID) -> Optional[EnrichmentLease]:
        result = await self.session.execute(
            select(EnrichmentLease).where(EnrichmentLease.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def acquire(self, job_id: UUID, run_id: UUID, holder: str, ttl_seconds: int) -> EnrichmentLease:
        """Take the lease, replacing an expired or cancelled one.

        Raises:
            EnrichmentInProgressError: If a live lease is held by another run
        """
        now = _utcnow()
        try:
            result = await self.session.execute(
                select(EnrichmentLease).where(EnrichmentLease.job_id == job_id).with_for_update()
            )
            lease = result.scalar_one_or_none()
            if lease is not None and not lease.cancelled and lease.expires_at > now:
                await self.session.rollback()
                raise EnrichmentInProgressError(
                    f"Enrichment already running for job {job_id} (run {lease.run_id})"
                )
            if lease is None:
                lease = EnrichmentLease(job_id=job_id)
                self.session.add(lease)
            lease.run_id = run_id
            lease.holder = holder
            lease.cancelled = False
            lease.acquired_at = now
            lease.expires_at = now + timedelta(seconds=ttl_seconds)
            await self.session.flush()
            await self.session.commit()
            return lease
        except IntegrityError as e:
            await self.session.rollback()
            raise EnrichmentInProgressError(
                f"Enrichment already running for job {job_id}", original_error=e
            ) from e

    async def is_active(self, job_id: UUID) -> bool:
        lease = await self.get_for_job(job_id)
        return lease is not None and not lease.cancelled and lease.expires_at > _utcnow()

    async def is_cancelled(self, job_id: UUID, run_id: UUID) -> bool:
        """True once the run's lease was cancelled, taken over or removed."""
        lease = await self.get_for_job(job_id)
        if lease is None or lease.run_id != run_id:
            return True
        await self.session.refresh(lease)
        return lease.cancelled

    async def cancel(self, job_id: UUID) -> bool:
        lease = await self.get_for_job(job_id)
        if lease is None:
            return False
        lease.cancelled = True
        await self.save(lease)
        return True

    async def release(self, job_id: UUID, run_id: UUID) -> None:
        """Drop the lease if this run still owns it."""
        try:
            await self.session.execute(
                delete(EnrichmentLease).where(
                    EnrichmentLease.job_id == job_id, EnrichmentLease.run_id == run_id
                )
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error releasing enrichment lease for job {job_id}: {e}", exc_info=True)
            raise


class EnrichmentFailureRepository(BaseRepository[EnrichmentFailure]):
    """Per (job, entity, agent) failure markers."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EnrichmentFailure)

    async def list_for_job(self, job_id: UUID) -> List[EnrichmentFailure]:
        result = await self.session.execute(
            select(EnrichmentFailure)
            .where(EnrichmentFailure.job_id == job_id)
            .order_by(EnrichmentFailure.created_at)
        )
        return list(result.scalars().all())

    async def record(
        self, job_id: UUID, entity_id: UUID, agent_name: str, error: str, retryable: bool = True
    ) -> EnrichmentFailure:
        result = await self.session.execute(
            select(EnrichmentFailure).where(
                EnrichmentFailure.job_id == job_id,
                EnrichmentFailure.entity_id == entity_id,
                EnrichmentFailure.agent_name == agent_name,
            )
        )
        failure = result.scalar_one_or_none()
        if failure is None:
            failure = EnrichmentFailure(job_id=job_id, entity_id=entity_id, agent_name=agent_name)
        failure.error = error[:2000]
        failure.retryable = retryable
        return await self.save(failure)

    async def clear(self, job_id: UUID, entity_id: UUID, agent_name: str) -> None:
        try:
            await self.session.execute(
                delete(EnrichmentFailure).where(
                    EnrichmentFailure.job_id == job_id,
                    EnrichmentFailure.entity_id == entity_id,
                    EnrichmentFailure.agent_name == agent_name,
                )
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error clearing enrichment failure for job {job_id}: {e}", exc_info=True)
            raise


class EnrichmentHistoryRepository(BaseRepository[EnrichmentHistory]):
    """Content hash and pass counter per enriched source."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EnrichmentHistory)

    async def get_for_source(self, source_table: str, source_id: UUID) -> Optional[EnrichmentHistory]:
        result = await self.session.execute(
            select(EnrichmentHistory).where(
                EnrichmentHistory.source_table == source_table,
                EnrichmentHistory.source_id == source_id,
            )
        )
        return result.scalar_one_or_none()

    async def record_pass(self, source_table: str, source_id: UUID, content_hash: str) -> EnrichmentHistory:
        history = await self.get_for_source(source_table, source_id)
        if history is None:
            history = EnrichmentHistory(
                source_table=source_table, source_id=source_id, enrichment_count=0
            )
        history.content_hash = content_hash
        history.enrichment_count = (history.enrichment_count or 0) + 1
        history.last_enriched_at = _utcnow()
        return await self.save(history)
