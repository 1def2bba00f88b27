import json
from uuid import uuid4

from imagineer.services.campaign.contracts import EntityRecord
from imagineer.services.enrichment import parser


def _entities():
    return [EntityRecord(id=uuid4(), name="Viktor"), EntityRecord(id=uuid4(), name="Mira")]


def test_scan_resolves_targets_by_id_then_name_and_drops_unknowns():
    viktor, mira = _entities()
    raw = json.dumps({
        "entities": [
            {"entityId": str(viktor.id), "entityName": "Viktor", "reason": "reveals his past"},
            {"entityId": "not-a-uuid", "entityName": "mira", "reason": "new ally"},
            {"entityId": str(uuid4()), "entityName": "Ghost"},
            {"entityId": str(viktor.id), "entityName": "Viktor"},
        ],
        "newEntities": [
            {"name": "Inspector Barrington", "entity_type": "NPC", "description": "A detective"},
            {"name": "", "entity_type": "npc"},
        ],
    })

    result = parser.parse_scan_response(raw, [viktor, mira])

    assert [t.entity for t in result.targets] == [viktor, mira]
    assert result.targets[0].reason == "reveals his past"
    assert [p.name for p in result.new_entities] == ["Inspector Barrington"]
    assert result.new_entities[0].entity_type == "npc"


def test_malformed_output_yields_empty_lists():
    assert parser.parse_scan_response("I could not find anything, sorry.", _entities()).targets == []
    assert parser.parse_log_entries("[1, 2, 3]") == []
    assert parser.parse_relationships('{"relationships": "none"}') == []


def test_description_updates_skip_blank_suggestions():
    raw = json.dumps({"descriptionUpdates": [
        {"suggestedDescription": "  "},
        {"currentDescription": "Old", "suggestedDescription": "A grizzled guard.", "rationale": "scar"},
    ]})

    assert parser.parse_description_updates(raw) == [{
        "current_description": "Old",
        "suggested_description": "A grizzled guard.",
        "rationale": "scar",
    }]


def test_log_entries_and_relationships_are_read_from_fenced_json():
    raw = "```json\n" + json.dumps({
        "logEntries": [{"content": "Lost his lantern", "occurredAt": "Day 3"}, {"content": ""}],
    }) + "\n```"

    assert parser.parse_log_entries(raw) == [{"content": "Lost his lantern", "occurred_at": "Day 3"}]


def test_unknown_entity_type_becomes_other():
    assert parser.normalize_entity_type("Dragon") == "other"
    assert parser.normalize_entity_type(" Location ") == "location"
    assert parser.normalize_entity_type(None) == "other"
