"""Repositories for analysis jobs and items."""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.database.models import AnalysisItem, AnalysisJob
from imagineer.repositories.base_repository import BaseRepository


class AnalysisJobRepository(BaseRepository[AnalysisJob]):
    """Repository for AnalysisJob rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnalysisJob)


class AnalysisItemRepository(BaseRepository[AnalysisItem]):
    """Repository for AnalysisItem rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnalysisItem)

    async def list_for_job(
        self,
        job_id: UUID,
        resolution: Optional[str] = None,
        phase: Optional[str] = None,
        detection_type: Optional[str] = None,
    ) -> List[AnalysisItem]:
        """List a job's items, optionally filtered, in creation order."""
        try:
            query = select(AnalysisItem).where(AnalysisItem.job_id == job_id)
            if resolution:
                query = query.where(AnalysisItem.resolution == resolution)
            if phase:
                query = query.where(AnalysisItem.phase == phase)
            if detection_type:
                query = query.where(AnalysisItem.detection_type == detection_type)
            query = query.order_by(AnalysisItem.created_at, AnalysisItem.position_start)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing items for job {job_id}: {e}", exc_info=True)
            raise

    async def bulk_create(self, rows: Iterable[dict]) -> List[AnalysisItem]:
        """Insert many items in one commit."""
        items = [AnalysisItem(**row) for row in rows]
        if not items:
            return []
        try:
            self.session.add_all(items)
            await self.session.flush()
            await self.session.commit()
            return items
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error inserting {len(items)} analysis items: {e}", exc_info=True)
            raise

    async def delete_pending(self, job_id: UUID, phase: str, detection_type: Optional[str] = None) -> int:
        """Remove unresolved items of one phase (used before a re-run)."""
        try:
            stmt = delete(AnalysisItem).where(
                AnalysisItem.job_id == job_id,
                AnalysisItem.phase == phase,
                AnalysisItem.resolution == "pending",
            )
            if detection_type:
                stmt = stmt.where(AnalysisItem.detection_type == detection_type)
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error clearing pending {phase} items for job {job_id}: {e}", exc_info=True)
            raise

    async def shift_positions(self, job_id: UUID, exclude_id: UUID, after: int, delta: int) -> None:
        """Shift offsets of pending identification items that start at or after ``after``."""
        if delta == 0:
            return
        try:
            await self.session.execute(
                update(AnalysisItem)
                .where(
                    AnalysisItem.job_id == job_id,
                    AnalysisItem.id != exclude_id,
                    AnalysisItem.phase == "identification",
                    AnalysisItem.resolution == "pending",
                    AnalysisItem.position_start >= after,
                )
                .values(
                    position_start=AnalysisItem.position_start + delta,
                    position_end=AnalysisItem.position_end + delta,
                )
                .execution_options(synchronize_session="fetch")
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error shifting item positions for job {job_id}: {e}", exc_info=True)
            raise

    async def counts_by_phase(self, job_id: UUID) -> Dict[str, Tuple[int, int]]:
        """Return {phase: (total, resolved)} for a job."""
        resolved = func.sum(case((AnalysisItem.resolution != "pending", 1), else_=0))
        query = (
            select(AnalysisItem.phase, func.count(), resolved)
            .where(AnalysisItem.job_id == job_id)
            .group_by(AnalysisItem.phase)
        )
        result = await self.session.execute(query)
        return {phase: (int(total), int(done or 0)) for phase, total, done in result.all()}

    async def resolved_references(self, job_id: UUID) -> Set[Tuple[str, str]]:
        """(detection_type, lower(matched_text)) of every resolved identification item."""
        query = select(AnalysisItem.detection_type, AnalysisItem.matched_text).where(
            AnalysisItem.job_id == job_id,
            AnalysisItem.phase == "identification",
            AnalysisItem.resolution != "pending",
        )
        result = await self.session.execute(query)
        return {(dt, text.lower()) for dt, text in result.all()}

    async def count_pending_for_source(self, source_table: str, source_id: UUID) -> int:
        query = (
            select(func.count())
            .select_from(AnalysisItem)
            .join(AnalysisJob, AnalysisJob.id == AnalysisItem.job_id)
            .where(
                AnalysisJob.source_table == source_table,
                AnalysisJob.source_id == source_id,
                AnalysisItem.resolution == "pending",
            )
        )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def set_resolution(self, item: AnalysisItem, resolution: str) -> AnalysisItem:
        item.resolution = resolution
        item.resolved_at = datetime.now(timezone.utc)
        return await self.save(item)
