"""Parse enrichment model output into typed suggestions.

Malformed output never raises: it yields an empty list and a log line, so a
chatty model costs one unit's suggestions rather than the whole run.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from imagineer.schemas.analysis import ALLOWED_ENTITY_TYPES, NewEntityProposal
from imagineer.utils.json_parser import parse_json_object
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ScanTarget:
    entity: object
    reason: str = ""


@dataclass
class ScanResult:
    targets: List[ScanTarget] = field(default_factory=list)
    new_entities: List[NewEntityProposal] = field(default_factory=list)


def _list_field(raw: str, key: str) -> List[dict]:
    data = parse_json_object(raw)
    if data is None:
        LOGGER.warning("Enrichment response was not a JSON object", extra={"expected_key": key})
        return []
    value = data.get(key) or []
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _as_uuid(value) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def normalize_entity_type(value: Optional[str]) -> str:
    entity_type = _clean(value).lower()
    return entity_type if entity_type in ALLOWED_ENTITY_TYPES else "other"


def lookup_entity(entity_id, entity_name, entities: Sequence) -> Optional[object]:
    """Find an entity by id, falling back to a case-insensitive name match."""
    uid = _as_uuid(entity_id)
    if uid is not None:
        for e in entities:
            if e.id == uid:
                return e
    name = _clean(entity_name).lower()
    if name:
        for e in entities:
            if e.name.lower() == name:
                return e
    return None


def parse_new_entity_items(items: List[dict]) -> List[NewEntityProposal]:
    proposals = []
    for item in items:
        name = _clean(item.get("name"))
        if not name:
            continue
        proposals.append(NewEntityProposal(
            name=name,
            entity_type=normalize_entity_type(item.get("entity_type")),
            description=_clean(item.get("description")) or None,
            reasoning=_clean(item.get("reasoning")) or None,
        ))
    return proposals


def parse_scan_response(raw: str, entities: Sequence) -> ScanResult:
    """Pass 1 checklist. Unknown ids are resolved by name or dropped."""
    result = ScanResult()
    seen = set()
    for item in _list_field(raw, "entities"):
        entity = lookup_entity(item.get("entityId"), item.get("entityName"), entities)
        if entity is None or entity.id in seen:
            continue
        seen.add(entity.id)
        result.targets.append(ScanTarget(entity=entity, reason=_clean(item.get("reason"))))
    result.new_entities = parse_new_entity_items(_list_field(raw, "newEntities"))
    return result


def parse_description_updates(raw: str) -> List[Dict[str, Optional[str]]]:
    updates = []
    for item in _list_field(raw, "descriptionUpdates"):
        suggested = _clean(item.get("suggestedDescription"))
        if not suggested:
            continue
        updates.append({
            "current_description": _clean(item.get("currentDescription")) or None,
            "suggested_description": suggested,
            "rationale": _clean(item.get("rationale")) or None,
        })
    return updates


def parse_log_entries(raw: str) -> List[Dict[str, Optional[str]]]:
    entries = []
    for item in _list_field(raw, "logEntries"):
        content = _clean(item.get("content"))
        if not content:
            continue
        entries.append({"content": content, "occurred_at": _clean(item.get("occurredAt")) or None})
    return entries


def parse_relationships(raw: str) -> List[dict]:
    """Raw relationship proposals; ids and types are resolved by the agent."""
    proposals = []
    for item in _list_field(raw, "relationships"):
        rel_type = _clean(item.get("relationshipType"))
        if not rel_type:
            continue
        proposals.append({
            "source_entity_id": item.get("sourceEntityId"),
            "source_entity_name": _clean(item.get("sourceEntityName")),
            "target_entity_id": item.get("targetEntityId"),
            "target_entity_name": _clean(item.get("targetEntityName")),
            "relationship_type": rel_type,
            "description": _clean(item.get("description")) or None,
        })
    return proposals


def parse_new_entities(raw: str) -> List[NewEntityProposal]:
    return parse_new_entity_items(_list_field(raw, "new_entities"))
