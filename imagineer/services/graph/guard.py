"""Pure rules for the single-edge relationship graph.

A relationship is stored once, in its canonical direction. Its inverse is
derived on read, so writing the inverse as a second row is a duplicate.
These helpers compute which existing rows forbid a new edge and how a
type name given by a caller maps onto the campaign's canonical types.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from uuid import UUID


@dataclass(frozen=True)
class TypeSpec:
    """The parts of a relationship type the guard needs."""

    id: UUID
    name: str
    inverse_name: str
    is_symmetric: bool
    display_label: str = ""
    inverse_display_label: str = ""


@dataclass(frozen=True)
class EdgeKey:
    source_entity_id: UUID
    target_entity_id: UUID
    relationship_type_id: UUID


@dataclass(frozen=True)
class ResolvedType:
    """A caller's type name mapped onto a canonical type.

    ``swapped`` is True when the name was an inverse, so the caller's
    source and target must be exchanged before writing.
    """

    type: TypeSpec
    swapped: bool = False

    @property
    def mapped_from(self) -> Optional[str]:
        return self.type.inverse_name if self.swapped else None


@dataclass(frozen=True)
class EdgeView:
    """One row of the dual-direction projection."""

    relationship_id: UUID
    from_entity_id: UUID
    to_entity_id: UUID
    relationship_type_id: UUID
    relationship_type: str
    display_label: str
    direction: str  # forward | inverse
    description: Optional[str] = None


def normalize_type_name(name: str) -> str:
    return "_".join(name.strip().lower().replace("-", " ").split())


def resolve_type(type_name: str, types: Iterable[TypeSpec]) -> Optional[ResolvedType]:
    """Map a type name to a canonical type.

    A canonical ``name`` wins. Otherwise an asymmetric type whose
    ``inverse_name`` matches is used with the direction swapped. Returns
    None when nothing matches.
    """
    wanted = normalize_type_name(type_name)
    types = list(types)
    for t in types:
        if t.name == wanted:
            return ResolvedType(type=t, swapped=False)
    for t in types:
        if not t.is_symmetric and t.inverse_name == wanted:
            return ResolvedType(type=t, swapped=True)
    return None


def inverse_conflict_keys(
    source_entity_id: UUID,
    target_entity_id: UUID,
    rel_type: TypeSpec,
    types: Sequence[TypeSpec],
) -> List[EdgeKey]:
    """Every stored edge whose presence forbids inserting this one.

    Always includes the exact duplicate. A symmetric type also forbids the
    swapped edge of the same type. An asymmetric type forbids a swapped
    edge of any type that is its inverse, whichever side declares it.
    """
    keys = [EdgeKey(source_entity_id, target_entity_id, rel_type.id)]
    if rel_type.is_symmetric:
        keys.append(EdgeKey(target_entity_id, source_entity_id, rel_type.id))
        return keys

    for t in types:
        if t.is_symmetric:
            continue
        if t.name == rel_type.inverse_name or t.inverse_name == rel_type.name:
            key = EdgeKey(target_entity_id, source_entity_id, t.id)
            if key not in keys:
                keys.append(key)
    return keys


def project_views(edges: Iterable, types: Sequence[TypeSpec]) -> List[EdgeView]:
    """Compute forward and inverse rows the way ``entity_relationships_view`` does.

    Args:
        edges: Objects with id, source_entity_id, target_entity_id,
            relationship_type_id and description attributes
        types: Campaign relationship types
    """
    by_id = {t.id: t for t in types}
    views: List[EdgeView] = []
    for edge in edges:
        t = by_id.get(edge.relationship_type_id)
        if t is None:
            continue
        views.append(EdgeView(
            relationship_id=edge.id,
            from_entity_id=edge.source_entity_id,
            to_entity_id=edge.target_entity_id,
            relationship_type_id=t.id,
            relationship_type=t.name,
            display_label=t.display_label,
            direction="forward",
            description=edge.description,
        ))
        if not t.is_symmetric:
            views.append(EdgeView(
                relationship_id=edge.id,
                from_entity_id=edge.target_entity_id,
                to_entity_id=edge.source_entity_id,
                relationship_type_id=t.id,
                relationship_type=t.inverse_name,
                display_label=t.inverse_display_label,
                direction="inverse",
                description=edge.description,
            ))
    return views
