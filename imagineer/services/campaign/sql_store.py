"""PostgreSQL-backed campaign store."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.exceptions import DatabaseError, NotFoundError
from imagineer.database.models import Entity
from imagineer.repositories.content_chunk_repository import ContentChunkRepository
from imagineer.repositories.entity_repository import EntityLogRepository, EntityRepository
from imagineer.repositories.relationship_repository import RelationshipRepository
from imagineer.services.campaign.contracts import (
    CampaignStore,
    EntityRecord,
    RelationshipRecord,
    SearchHit,
    validate_source,
)
from imagineer.services.context.embedding import embed_texts
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _to_record(entity: Entity) -> EntityRecord:
    return EntityRecord(
        id=entity.id,
        name=entity.name,
        entity_type=entity.entity_type,
        description=entity.description,
        campaign_id=entity.campaign_id,
    )


class SqlCampaignStore(CampaignStore):
    """Campaign store over the shared database.

    Content fields are addressed with ``text()`` SQL. Table and column
    names are interpolated only after they pass the source whitelist.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.entity_repository = EntityRepository(session)
        self.log_repository = EntityLogRepository(session)
        self.relationship_repository = RelationshipRepository(session)
        self.chunk_repository = ContentChunkRepository(session)

    async def get_content(self, table: str, row_id: UUID, field_name: str) -> str:
        validate_source(table, field_name)
        try:
            result = await self.session.execute(
                text(f"SELECT {field_name} FROM {table} WHERE id = :row_id"),
                {"row_id": row_id},
            )
            row = result.first()
        except SQLAlchemyError as e:
            LOGGER.error(f"Error reading {table}.{field_name} for {row_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to read {table}.{field_name}", original_error=e) from e
        if row is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        return row[0] or ""

    async def write_content(self, table: str, row_id: UUID, field_name: str, content: str) -> None:
        validate_source(table, field_name)
        try:
            result = await self.session.execute(
                text(f"UPDATE {table} SET {field_name} = :content WHERE id = :row_id"),
                {"content": content, "row_id": row_id},
            )
            if result.rowcount == 0:
                await self.session.rollback()
                raise NotFoundError(f"{table} row {row_id} not found")
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            LOGGER.error(f"Error writing {table}.{field_name} for {row_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to write {table}.{field_name}", original_error=e) from e

        LOGGER.info(
            "Source content written",
            extra={"source_table": table, "source_id": str(row_id), "source_field": field_name},
        )

    async def list_entities(self, campaign_id: UUID) -> List[EntityRecord]:
        return [_to_record(e) for e in await self.entity_repository.list_for_campaign(campaign_id)]

    async def get_entity(self, campaign_id: UUID, entity_id: UUID) -> Optional[EntityRecord]:
        entity = await self.entity_repository.get_in_campaign(campaign_id, entity_id)
        return _to_record(entity) if entity else None

    async def create_entity(
        self,
        campaign_id: UUID,
        name: str,
        entity_type: str = "other",
        description: Optional[str] = None,
    ) -> EntityRecord:
        entity = await self.entity_repository.create(
            campaign_id=campaign_id,
            name=name,
            entity_type=entity_type,
            description=description,
        )
        LOGGER.info(
            "Entity created",
            extra={"campaign_id": str(campaign_id), "entity_id": str(entity.id), "entity_type": entity_type},
        )
        return _to_record(entity)

    async def update_entity_description(self, campaign_id: UUID, entity_id: UUID, description: str) -> None:
        entity = await self.entity_repository.get_in_campaign(campaign_id, entity_id)
        if entity is None:
            raise NotFoundError(f"Entity {entity_id} not found")
        entity.description = description
        await self.entity_repository.save(entity)

    async def create_entity_log(
        self,
        campaign_id: UUID,
        entity_id: UUID,
        content: str,
        occurred_at: Optional[str] = None,
        job_id: Optional[UUID] = None,
    ) -> UUID:
        log = await self.log_repository.create(
            entity_id=entity_id,
            campaign_id=campaign_id,
            content=content,
            occurred_at=occurred_at,
            job_id=job_id,
        )
        return log.id

    async def list_relationships(self, campaign_id: UUID) -> List[RelationshipRecord]:
        edges = await self.relationship_repository.list_for_campaign(campaign_id)
        return [
            RelationshipRecord(
                id=edge.id,
                source_entity_id=edge.source_entity_id,
                target_entity_id=edge.target_entity_id,
                relationship_type_id=edge.relationship_type_id,
                relationship_type=edge.relationship_type.name,
                description=edge.description,
            )
            for edge in edges
        ]

    async def search_campaign_content(self, campaign_id: UUID, query: str, limit: int) -> List[SearchHit]:
        vectors = await embed_texts([query])
        if not vectors:
            return []
        rows = await self.chunk_repository.semantic_search(campaign_id, vectors[0], limit=limit)
        return [
            SearchHit(
                source_table=chunk.source_table,
                source_id=chunk.source_id,
                snippet=chunk.chunk_text,
                score=1.0 - distance,
                metadata={"source_field": chunk.source_field, "chunk_index": chunk.chunk_index},
            )
            for chunk, distance in rows
        ]
