"""What the pipeline needs from the campaign (CRUD) layer.

The campaign, chapter and session records themselves are owned elsewhere.
The pipeline reads and writes individual text fields, lists and creates
entities, and searches indexed campaign content.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from imagineer.core.exceptions import ValidationError

# Text fields the pipeline may read and rewrite, per table
SOURCE_FIELDS: Dict[str, FrozenSet[str]] = {
    "entities": frozenset({"description", "gm_notes"}),
    "chapters": frozenset({"overview"}),
    "sessions": frozenset({"prep_notes", "actual_notes"}),
    "campaigns": frozenset({"description"}),
}


def validate_source(table: str, field_name: str) -> None:
    """Raise ValidationError unless (table, field) is an analysable text field."""
    allowed = SOURCE_FIELDS.get(table)
    if allowed is None:
        raise ValidationError(f"Unsupported source table '{table}'")
    if field_name not in allowed:
        raise ValidationError(f"Field '{field_name}' of '{table}' cannot be analysed")


@dataclass
class EntityRecord:
    id: UUID
    name: str
    entity_type: str = "other"
    description: Optional[str] = None
    campaign_id: Optional[UUID] = None


@dataclass
class RelationshipRecord:
    id: UUID
    source_entity_id: UUID
    target_entity_id: UUID
    relationship_type_id: UUID
    relationship_type: str
    description: Optional[str] = None


@dataclass
class SearchHit:
    source_table: str
    source_id: UUID
    snippet: str
    score: float
    metadata: dict = field(default_factory=dict)


class CampaignStore(ABC):
    """Collaborator interface for campaign content and the entity graph."""

    @abstractmethod
    async def get_content(self, table: str, row_id: UUID, field_name: str) -> str:
        """Return a text field, "" when NULL.

        Raises:
            ValidationError: For a table/field outside the whitelist
            NotFoundError: If the row does not exist
        """

    @abstractmethod
    async def write_content(self, table: str, row_id: UUID, field_name: str, text: str) -> None:
        pass

    @abstractmethod
    async def list_entities(self, campaign_id: UUID) -> List[EntityRecord]:
        pass

    @abstractmethod
    async def get_entity(self, campaign_id: UUID, entity_id: UUID) -> Optional[EntityRecord]:
        pass

    @abstractmethod
    async def create_entity(
        self,
        campaign_id: UUID,
        name: str,
        entity_type: str = "other",
        description: Optional[str] = None,
    ) -> EntityRecord:
        pass

    @abstractmethod
    async def update_entity_description(self, campaign_id: UUID, entity_id: UUID, description: str) -> None:
        pass

    @abstractmethod
    async def create_entity_log(
        self,
        campaign_id: UUID,
        entity_id: UUID,
        content: str,
        occurred_at: Optional[str] = None,
        job_id: Optional[UUID] = None,
    ) -> UUID:
        pass

    @abstractmethod
    async def list_relationships(self, campaign_id: UUID) -> List[RelationshipRecord]:
        pass

    @abstractmethod
    async def search_campaign_content(self, campaign_id: UUID, query: str, limit: int) -> List[SearchHit]:
        """Nearest indexed passages for ``query``.

        Raises whatever the index raises; callers decide how to degrade.
        """
