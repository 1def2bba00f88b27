from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.database.models import Entity, EntityLog
from imagineer.repositories.base_repository import BaseRepository


class EntityRepository(BaseRepository[Entity]):
    """Repository for campaign entities. The pipeline never deletes them."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Entity)

    async def list_for_campaign(self, campaign_id: UUID) -> List[Entity]:
        query = select(Entity).where(Entity.campaign_id == campaign_id).order_by(Entity.name)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_in_campaign(self, campaign_id: UUID, entity_id: UUID) -> Optional[Entity]:
        query = select(Entity).where(Entity.campaign_id == campaign_id, Entity.id == entity_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()


class EntityLogRepository(BaseRepository[EntityLog]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, EntityLog)
