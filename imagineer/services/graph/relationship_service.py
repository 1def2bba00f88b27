"""Relationship writes and reads for the campaign graph."""

from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from imagineer.core.exceptions import RelationshipConflictError, ValidationError
from imagineer.database.models import Relationship, RelationshipType
from imagineer.repositories.relationship_repository import (
    RelationshipRepository,
    RelationshipTypeRepository,
)
from imagineer.services.graph.guard import (
    EdgeView,
    ResolvedType,
    TypeSpec,
    inverse_conflict_keys,
    normalize_type_name,
    project_views,
    resolve_type,
)
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Copied into every new campaign
DEFAULT_RELATIONSHIP_TYPES = [
    {"name": "owns", "inverse_name": "owned_by", "is_symmetric": False,
     "display_label": "Owns", "inverse_display_label": "Is owned by",
     "description": "Entity possesses or controls another entity"},
    {"name": "employs", "inverse_name": "employed_by", "is_symmetric": False,
     "display_label": "Employs", "inverse_display_label": "Is employed by",
     "description": "Entity employs another as worker or servant"},
    {"name": "works_for", "inverse_name": "employs", "is_symmetric": False,
     "display_label": "Works for", "inverse_display_label": "Employs",
     "description": "Entity works for another"},
    {"name": "reports_to", "inverse_name": "manages", "is_symmetric": False,
     "display_label": "Reports to", "inverse_display_label": "Manages",
     "description": "Entity reports to another in organizational hierarchy"},
    {"name": "parent_of", "inverse_name": "child_of", "is_symmetric": False,
     "display_label": "Parent of", "inverse_display_label": "Child of",
     "description": "Entity is parent of another"},
    {"name": "located_at", "inverse_name": "contains", "is_symmetric": False,
     "display_label": "Located at", "inverse_display_label": "Contains",
     "description": "Entity is physically located at another location"},
    {"name": "member_of", "inverse_name": "has_member", "is_symmetric": False,
     "display_label": "Member of", "inverse_display_label": "Has member",
     "description": "Entity is member of organization or faction"},
    {"name": "created", "inverse_name": "created_by", "is_symmetric": False,
     "display_label": "Created", "inverse_display_label": "Created by",
     "description": "Entity created or made another entity"},
    {"name": "rules", "inverse_name": "ruled_by", "is_symmetric": False,
     "display_label": "Rules", "inverse_display_label": "Ruled by",
     "description": "Entity has political authority over another"},
    {"name": "headquartered_at", "inverse_name": "headquarters_of", "is_symmetric": False,
     "display_label": "Headquartered at", "inverse_display_label": "Headquarters of",
     "description": "Entity has its primary base of operations at a location"},
    {"name": "knows", "inverse_name": "knows", "is_symmetric": True,
     "display_label": "Knows", "inverse_display_label": "Knows",
     "description": "Entity is acquainted with another"},
    {"name": "friend_of", "inverse_name": "friend_of", "is_symmetric": True,
     "display_label": "Friend of", "inverse_display_label": "Friend of",
     "description": "Entity has friendly relationship with another"},
    {"name": "enemy_of", "inverse_name": "enemy_of", "is_symmetric": True,
     "display_label": "Enemy of", "inverse_display_label": "Enemy of",
     "description": "Entity has hostile relationship with another"},
    {"name": "allied_with", "inverse_name": "allied_with", "is_symmetric": True,
     "display_label": "Allied with", "inverse_display_label": "Allied with",
     "description": "Entity has alliance or partnership with another"},
]


def to_type_spec(rel_type: RelationshipType) -> TypeSpec:
    return TypeSpec(
        id=rel_type.id,
        name=rel_type.name,
        inverse_name=rel_type.inverse_name,
        is_symmetric=rel_type.is_symmetric,
        display_label=rel_type.display_label,
        inverse_display_label=rel_type.inverse_display_label,
    )


def _label(name: str) -> str:
    return name.replace("_", " ").capitalize()


class RelationshipService:
    """Writes edges through the inverse guard and reads both directions.

    Args:
        session: Async database session
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.type_repository = RelationshipTypeRepository(session)
        self.relationship_repository = RelationshipRepository(session)

    async def seed_relationship_types(self, campaign_id: UUID) -> int:
        """Copy the default templates into a campaign. Returns rows added."""
        created = await self.type_repository.create_many(campaign_id, DEFAULT_RELATIONSHIP_TYPES)
        LOGGER.info(
            "Seeded relationship types",
            extra={"campaign_id": str(campaign_id), "types_added": len(created)},
        )
        return len(created)

    async def list_types(self, campaign_id: UUID) -> List[TypeSpec]:
        return [to_type_spec(t) for t in await self.type_repository.list_for_campaign(campaign_id)]

    async def resolve(self, campaign_id: UUID, type_name: str) -> Optional[ResolvedType]:
        return resolve_type(type_name, await self.list_types(campaign_id))

    async def create_type(
        self,
        campaign_id: UUID,
        name: str,
        inverse_name: Optional[str] = None,
        is_symmetric: bool = False,
        description: Optional[str] = None,
    ) -> TypeSpec:
        """Add a campaign type, e.g. when an accepted suggestion needs one.

        Raises:
            ValidationError: If the name is empty or already in use
        """
        name = normalize_type_name(name)
        if not name:
            raise ValidationError("Relationship type name is required")
        inverse = name if is_symmetric else normalize_type_name(inverse_name or f"{name}_of")
        existing = await self.list_types(campaign_id)
        if any(t.name == name for t in existing):
            raise ValidationError(f"Relationship type '{name}' already exists")

        rel_type = await self.type_repository.create(
            campaign_id=campaign_id,
            name=name,
            inverse_name=inverse,
            is_symmetric=is_symmetric,
            display_label=_label(name),
            inverse_display_label=_label(inverse),
            description=description,
        )
        LOGGER.info(
            "Created relationship type",
            extra={"campaign_id": str(campaign_id), "type_name": name, "inverse_name": inverse},
        )
        return to_type_spec(rel_type)

    async def add_relationship(
        self,
        campaign_id: UUID,
        source_entity_id: UUID,
        target_entity_id: UUID,
        type_name: str,
        description: Optional[str] = None,
    ) -> Tuple[Relationship, ResolvedType]:
        """Store one edge in canonical direction.

        Raises:
            ValidationError: If the type is unknown or the edge is a self-loop
            RelationshipConflictError: If the edge or its inverse already exists
        """
        types = await self.list_types(campaign_id)
        resolved = resolve_type(type_name, types)
        if resolved is None:
            raise ValidationError(f"Unknown relationship type '{type_name}'")

        source, target = source_entity_id, target_entity_id
        if resolved.swapped:
            source, target = target, source
        if source == target:
            raise ValidationError("An entity cannot be related to itself")

        for key in inverse_conflict_keys(source, target, resolved.type, types):
            exists = await self.relationship_repository.edge_exists(
                campaign_id, key.source_entity_id, key.target_entity_id, key.relationship_type_id
            )
            if exists:
                raise RelationshipConflictError(
                    f"'{resolved.type.name}' between these entities is already recorded"
                )

        edge = await self.relationship_repository.add_edge(
            campaign_id, source, target, resolved.type.id, description
        )
        LOGGER.info(
            "Relationship created",
            extra={
                "campaign_id": str(campaign_id),
                "relationship_id": str(edge.id),
                "type_name": resolved.type.name,
                "swapped": resolved.swapped,
            },
        )
        return edge, resolved

    async def list_relationships(self, campaign_id: UUID) -> List[Relationship]:
        return await self.relationship_repository.list_for_campaign(campaign_id)

    async def list_relationship_views(
        self, campaign_id: UUID, entity_id: Optional[UUID] = None
    ) -> List[EdgeView]:
        """Forward and inverse rows, optionally only those starting at ``entity_id``."""
        bind = self.session.get_bind()
        if bind.dialect.name == "postgresql":
            rows = await self.relationship_repository.list_views(campaign_id, entity_id)
            return [
                EdgeView(
                    relationship_id=row["id"],
                    from_entity_id=row["from_entity_id"],
                    to_entity_id=row["to_entity_id"],
                    relationship_type_id=row["relationship_type_id"],
                    relationship_type=row["relationship_type"],
                    display_label=row["display_label"],
                    direction=row["direction"],
                    description=row["description"],
                )
                for row in rows
            ]

        views = project_views(
            await self.relationship_repository.list_for_campaign(campaign_id),
            await self.list_types(campaign_id),
        )
        if entity_id is not None:
            views = [v for v in views if v.from_entity_id == entity_id]
        return views
