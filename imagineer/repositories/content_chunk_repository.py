from typing import List, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.database.models import ContentChunk
from imagineer.repositories.base_repository import BaseRepository


class ContentChunkRepository(BaseRepository[ContentChunk]):
    """Embedded campaign passages for semantic search."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ContentChunk)

    async def replace_for_source(
        self,
        campaign_id: UUID,
        source_table: str,
        source_id: UUID,
        source_field: str,
        chunks: Sequence[Tuple[str, List[float]]],
    ) -> int:
        """Swap a source field's chunks for a freshly embedded set."""
        try:
            await self.session.execute(
                delete(ContentChunk).where(
                    ContentChunk.source_table == source_table,
                    ContentChunk.source_id == source_id,
                    ContentChunk.source_field == source_field,
                )
            )
            self.session.add_all([
                ContentChunk(
                    campaign_id=campaign_id,
                    source_table=source_table,
                    source_id=source_id,
                    source_field=source_field,
                    chunk_index=index,
                    chunk_text=chunk_text,
                    embedding=embedding,
                )
                for index, (chunk_text, embedding) in enumerate(chunks)
            ])
            await self.session.flush()
            await self.session.commit()
            return len(chunks)
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error replacing chunks for {source_table}/{source_id}: {e}", exc_info=True)
            raise

    async def semantic_search(
        self, campaign_id: UUID, embedding: List[float], limit: int = 10
    ) -> List[Tuple[ContentChunk, float]]:
        """Return (chunk, cosine_distance) pairs, nearest first."""
        distance_expr = ContentChunk.embedding.cosine_distance(embedding)
        query = (
            select(ContentChunk, distance_expr.label("distance"))
            .where(ContentChunk.campaign_id == campaign_id, ContentChunk.embedding.is_not(None))
            .order_by(distance_expr)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [(chunk, float(distance)) for chunk, distance in result.all()]
