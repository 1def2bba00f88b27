"""Structural checks on the relationship graph, run after enrichment.

Orphans and redundant edges are always checked. A game-system schema may
also declare an ``ontology`` block; when it does, relationship suggestions
are checked against its entity-type pairs and per-entity limits, and
entities are checked for the relationship types their type requires::

    ontology:
      type_pairs:
        owns: [[npc, item], [faction, location]]
      cardinality:
        located_at: {max_source: 1}
      required:
        faction: [headquartered_at]

None of these checks call an LLM.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

import yaml

from imagineer.schemas.analysis import GraphWarningPayload
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class HealthFinding:
    matched_text: str
    entity_id: Optional[UUID]
    payload: GraphWarningPayload


@dataclass
class GraphRules:
    type_pairs: Dict[str, Set[Tuple[str, str]]] = field(default_factory=dict)
    max_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    required: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not (self.type_pairs or self.max_counts or self.required)

    @classmethod
    def from_schema(cls, raw: str) -> "GraphRules":
        """Read the ``ontology`` block of a game-system schema.

        Malformed entries are skipped; a schema without the block gives
        empty rules.
        """
        if not raw:
            return cls()
        try:
            ontology = (yaml.safe_load(raw) or {}).get("ontology") or {}
        except (yaml.YAMLError, AttributeError) as e:
            LOGGER.warning(f"Ignoring unreadable ontology: {e}")
            return cls()
        if not isinstance(ontology, dict):
            return cls()

        rules = cls()
        for type_name, pairs in (ontology.get("type_pairs") or {}).items():
            rules.type_pairs[type_name] = {
                (str(p[0]), str(p[1])) for p in pairs or [] if isinstance(p, list) and len(p) == 2
            }
        for type_name, limits in (ontology.get("cardinality") or {}).items():
            if not isinstance(limits, dict):
                continue
            rules.max_counts[type_name] = {
                direction: int(limits[f"max_{direction}"])
                for direction in ("source", "target")
                if limits.get(f"max_{direction}") is not None
            }
        for entity_type, type_names in (ontology.get("required") or {}).items():
            rules.required[entity_type] = [str(t) for t in type_names or []]
        return rules


def find_orphans(entities: Sequence, edges: Iterable) -> List[HealthFinding]:
    """Entities that take part in no relationship at all."""
    connected = set()
    for edge in edges:
        connected.add(edge.source_entity_id)
        connected.add(edge.target_entity_id)

    findings = []
    for entity in entities:
        if entity.id in connected:
            continue
        findings.append(HealthFinding(
            matched_text=entity.name,
            entity_id=entity.id,
            payload=GraphWarningPayload(
                warning="orphan",
                entity_ids=[entity.id],
                entity_names=[entity.name],
                detail=(
                    "Entity has no relationships. Consider connecting it to "
                    "other entities or checking that it is still relevant."
                ),
            ),
        ))
    return findings


def find_redundant_edges(
    edges: Iterable,
    type_names: Dict[UUID, str],
    entity_names: Dict[UUID, str],
    scope: Optional[set] = None,
) -> List[HealthFinding]:
    """Unordered entity pairs linked by more than one edge.

    Args:
        edges: Stored relationships
        type_names: relationship_type_id -> type name
        entity_names: entity id -> name
        scope: If given, only pairs touching one of these entity ids
    """
    by_pair = defaultdict(list)
    for edge in edges:
        pair = tuple(sorted((edge.source_entity_id, edge.target_entity_id), key=str))
        by_pair[pair].append(edge)

    findings = []
    for pair, pair_edges in sorted(by_pair.items(), key=lambda kv: (str(kv[0][0]), str(kv[0][1]))):
        if len(pair_edges) < 2:
            continue
        if scope is not None and not (pair[0] in scope or pair[1] in scope):
            continue
        names = [entity_names.get(eid, str(eid)) for eid in pair]
        types = [type_names.get(e.relationship_type_id, "unknown") for e in pair_edges]
        findings.append(HealthFinding(
            matched_text=" / ".join(names),
            entity_id=pair[0],
            payload=GraphWarningPayload(
                warning="redundant_edge",
                entity_ids=list(pair),
                entity_names=names,
                relationship_ids=[e.id for e in pair_edges],
                relationship_types=types,
                detail=(
                    f"{names[0]} and {names[1]} are linked by {len(pair_edges)} "
                    f"relationships ({', '.join(types)}). Some may be redundant."
                ),
            ),
        ))
    return findings


def find_type_pair_violations(
    suggestions: Sequence,
    entities_by_id: Dict[UUID, object],
    rules: GraphRules,
) -> List[HealthFinding]:
    """Relationship suggestions whose entity types the ontology does not allow.

    Types without declared pairs, and suggestions naming an unknown entity,
    are not checked.
    """
    findings = []
    for s in suggestions:
        allowed = rules.type_pairs.get(s.relationship_type)
        source = entities_by_id.get(s.source_entity_id)
        target = entities_by_id.get(s.target_entity_id)
        if not allowed or source is None or target is None:
            continue
        if (source.entity_type, target.entity_type) in allowed:
            continue
        valid = ", ".join(f"{a} -> {b}" for a, b in sorted(allowed))
        findings.append(HealthFinding(
            matched_text=f"{source.name} {s.relationship_type} {target.name}",
            entity_id=source.id,
            payload=GraphWarningPayload(
                warning="type_pair",
                entity_ids=[source.id, target.id],
                entity_names=[source.name, target.name],
                relationship_types=[s.relationship_type],
                detail=(
                    f"'{s.relationship_type}' from {source.entity_type} to {target.entity_type} "
                    f"is not an allowed pairing (allowed: {valid})."
                ),
            ),
        ))
    return findings


def find_cardinality_violations(
    edges: Iterable,
    suggestions: Sequence,
    type_names: Dict[UUID, str],
    entities_by_id: Dict[UUID, object],
    rules: GraphRules,
    scope: Optional[set] = None,
) -> List[HealthFinding]:
    """Entities whose stored plus suggested edges exceed a declared limit."""
    if not rules.max_counts:
        return []
    counts: Dict[Tuple[UUID, str, str], int] = defaultdict(int)
    links = [(type_names.get(e.relationship_type_id), e.source_entity_id, e.target_entity_id) for e in edges]
    links += [(s.relationship_type, s.source_entity_id, s.target_entity_id) for s in suggestions]
    for type_name, source_id, target_id in links:
        if type_name not in rules.max_counts:
            continue
        counts[(source_id, type_name, "source")] += 1
        counts[(target_id, type_name, "target")] += 1

    findings = []
    for (entity_id, type_name, direction), count in sorted(counts.items(), key=lambda kv: str(kv[0])):
        limit = rules.max_counts[type_name].get(direction)
        if limit is None or count <= limit:
            continue
        if scope is not None and entity_id not in scope:
            continue
        entity = entities_by_id.get(entity_id)
        name = entity.name if entity else str(entity_id)
        findings.append(HealthFinding(
            matched_text=name,
            entity_id=entity_id,
            payload=GraphWarningPayload(
                warning="cardinality",
                entity_ids=[entity_id],
                entity_names=[name],
                relationship_types=[type_name],
                detail=(
                    f"{name} is the {direction} of {count} '{type_name}' relationships, "
                    f"more than the {limit} allowed."
                ),
            ),
        ))
    return findings


def find_missing_required(
    entities: Sequence,
    edges: Iterable,
    type_names: Dict[UUID, str],
    rules: GraphRules,
    campaign_types: Optional[Set[str]] = None,
) -> List[HealthFinding]:
    """Entities lacking a relationship type their entity type requires.

    Either end of an edge satisfies the rule. Rules naming a type the
    campaign does not have are skipped.
    """
    if not rules.required:
        return []
    present = set()
    for edge in edges:
        type_name = type_names.get(edge.relationship_type_id)
        present.add((edge.source_entity_id, type_name))
        present.add((edge.target_entity_id, type_name))

    findings = []
    for entity in entities:
        for type_name in rules.required.get(entity.entity_type, []):
            if campaign_types is not None and type_name not in campaign_types:
                continue
            if (entity.id, type_name) in present:
                continue
            findings.append(HealthFinding(
                matched_text=entity.name,
                entity_id=entity.id,
                payload=GraphWarningPayload(
                    warning="missing_required",
                    entity_ids=[entity.id],
                    entity_names=[entity.name],
                    relationship_types=[type_name],
                    detail=f"Every {entity.entity_type} should have a '{type_name}' relationship.",
                ),
            ))
    return findings


def check_graph_health(
    entities: Sequence,
    all_entities: Sequence,
    edges: Sequence,
    type_names: Dict[UUID, str],
    rules: Optional[GraphRules] = None,
    suggestions: Sequence = (),
    campaign_types: Optional[Set[str]] = None,
) -> List[HealthFinding]:
    """Graph warnings for the entities an enrichment run touched.

    Args:
        entities: Entities in scope for the run
        all_entities: Every campaign entity, for naming
        edges: Every campaign relationship
        type_names: relationship_type_id -> type name
        rules: Ontology from the job's game system, if any
        suggestions: Pending relationship suggestion payloads for the job
        campaign_types: Names of the campaign's relationship types
    """
    if not entities:
        return []
    names = {e.id: e.name for e in all_entities}
    scope = {e.id for e in entities}
    findings = find_orphans(entities, edges) + find_redundant_edges(edges, type_names, names, scope)
    if rules is None or rules.empty:
        return findings

    by_id = {e.id: e for e in all_entities}
    touched = scope | {s.source_entity_id for s in suggestions} | {s.target_entity_id for s in suggestions}
    findings += find_type_pair_violations(suggestions, by_id, rules)
    findings += find_cardinality_violations(edges, suggestions, type_names, by_id, rules, touched)
    findings += find_missing_required(entities, edges, type_names, rules, campaign_types)
    return findings
