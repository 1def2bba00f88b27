"""Repositories for relationship types and single-edge relationships."""

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.exceptions import RelationshipConflictError
from imagineer.database.models import Relationship, RelationshipType
from imagineer.repositories.base_repository import BaseRepository


class RelationshipTypeRepository(BaseRepository[RelationshipType]):
    """Repository for campaign relationship types."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, RelationshipType)

    async def list_for_campaign(self, campaign_id: UUID) -> List[RelationshipType]:
        query = (
            select(RelationshipType)
            .where(RelationshipType.campaign_id == campaign_id)
            .order_by(RelationshipType.name)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create_many(self, campaign_id: UUID, templates: Iterable[dict]) -> List[RelationshipType]:
        """Insert templates that the campaign does not have yet."""
        existing = {t.name for t in await self.list_for_campaign(campaign_id)}
        rows = [
            RelationshipType(campaign_id=campaign_id, **tpl)
            for tpl in templates
            if tpl["name"] not in existing
        ]
        if not rows:
            return []
        try:
            self.session.add_all(rows)
            await self.session.flush()
            await self.session.commit()
            return rows
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error seeding relationship types for {campaign_id}: {e}", exc_info=True)
            raise


class RelationshipRepository(BaseRepository[Relationship]):
    """Repository for stored (forward-only) relationship edges."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Relationship)

    async def list_for_campaign(self, campaign_id: UUID) -> List[Relationship]:
        query = select(Relationship).where(Relationship.campaign_id == campaign_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def edge_exists(
        self,
        campaign_id: UUID,
        source_entity_id: UUID,
        target_entity_id: UUID,
        relationship_type_id: UUID,
    ) -> bool:
        query = select(Relationship.id).where(
            Relationship.campaign_id == campaign_id,
            Relationship.source_entity_id == source_entity_id,
            Relationship.target_entity_id == target_entity_id,
            Relationship.relationship_type_id == relationship_type_id,
        ).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none() is not None

    async def add_edge(
        self,
        campaign_id: UUID,
        source_entity_id: UUID,
        target_entity_id: UUID,
        relationship_type_id: UUID,
        description: Optional[str] = None,
    ) -> Relationship:
        """Insert one edge and commit.

        Raises:
            RelationshipConflictError: If the unique constraint or the
                inverse-guard trigger rejects the row
        """
        edge = Relationship(
            campaign_id=campaign_id,
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relationship_type_id=relationship_type_id,
            description=description,
        )
        try:
            self.session.add(edge)
            await self.session.flush()
            await self.session.commit()
            return edge
        except IntegrityError as e:
            await self.session.rollback()
            self.logger.info(
                "Relationship insert rejected by database guard",
                extra={"source": str(source_entity_id), "target": str(target_entity_id)},
            )
            raise RelationshipConflictError(
                "Relationship or its inverse already exists", original_error=e
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error inserting relationship: {e}", exc_info=True)
            raise

    async def list_views(self, campaign_id: UUID, entity_id: Optional[UUID] = None) -> List[dict]:
        """Read forward and inverse projections from entity_relationships_view."""
        sql = (
            "SELECT id, from_entity_id, to_entity_id, relationship_type_id, relationship_type, "
            "display_label, description, from_entity_name, to_entity_name, direction "
            "FROM entity_relationships_view WHERE campaign_id = :campaign_id"
        )
        params = {"campaign_id": campaign_id}
        if entity_id is not None:
            sql += " AND from_entity_id = :entity_id"
            params["entity_id"] = entity_id
        result = await self.session.execute(text(sql), params)
        return [dict(row) for row in result.mappings().all()]
