from types import SimpleNamespace
from uuid import uuid4

from imagineer.services.campaign.contracts import EntityRecord
from imagineer.services.context.context_assembler import load_game_system_schema
from imagineer.services.graph.health import GraphRules, check_graph_health, find_redundant_edges


def _edge(source, target, type_id):
    return SimpleNamespace(id=uuid4(), source_entity_id=source, target_entity_id=target,
                           relationship_type_id=type_id)


def test_orphans_and_redundant_pairs_are_reported_for_targets():
    viktor = EntityRecord(id=uuid4(), name="Viktor")
    mira = EntityRecord(id=uuid4(), name="Mira")
    lantern = EntityRecord(id=uuid4(), name="Lantern")
    owns, knows = uuid4(), uuid4()
    edges = [_edge(viktor.id, mira.id, owns), _edge(mira.id, viktor.id, knows)]

    findings = check_graph_health(
        [viktor, lantern], [viktor, mira, lantern], edges, {owns: "owns", knows: "knows"}
    )

    warnings = {f.payload.warning: f for f in findings}
    assert set(warnings) == {"orphan", "redundant_edge"}
    assert warnings["orphan"].entity_id == lantern.id
    redundant = warnings["redundant_edge"].payload
    assert set(redundant.entity_names) == {"Viktor", "Mira"}
    assert sorted(redundant.relationship_types) == ["knows", "owns"]
    assert len(redundant.relationship_ids) == 2


def test_no_targets_means_no_findings():
    assert check_graph_health([], [], [], {}) == []


def test_redundant_scope_excludes_unrelated_pairs():
    a, b, c = uuid4(), uuid4(), uuid4()
    t = uuid4()
    edges = [_edge(a, b, t), _edge(b, a, t)]

    assert find_redundant_edges(edges, {t: "knows"}, {}, scope={c}) == []
    assert len(find_redundant_edges(edges, {t: "knows"}, {}, scope=None)) == 1


ONTOLOGY = """
code: test
ontology:
  type_pairs:
    owns: [[npc, item]]
  cardinality:
    located_at: {max_source: 1}
  required:
    faction: [headquartered_at, sworn_to]
"""


def _suggestion(source, target, type_name):
    return SimpleNamespace(source_entity_id=source.id, target_entity_id=target.id, relationship_type=type_name)


def test_rules_are_read_from_schema_ontology():
    rules = GraphRules.from_schema(ONTOLOGY)

    assert rules.type_pairs == {"owns": {("npc", "item")}}
    assert rules.max_counts == {"located_at": {"source": 1}}
    assert rules.required == {"faction": ["headquartered_at", "sworn_to"]}
    assert GraphRules.from_schema("code: bare\n").empty
    assert GraphRules.from_schema("").empty


def test_shipped_schema_declares_ontology():
    assert not GraphRules.from_schema(load_game_system_schema("dnd-5e")).empty


def test_structural_rules_raise_their_own_warnings():
    viktor = EntityRecord(id=uuid4(), name="Viktor", entity_type="npc")
    tavern = EntityRecord(id=uuid4(), name="Tavern", entity_type="location")
    keep = EntityRecord(id=uuid4(), name="Keep", entity_type="location")
    guild = EntityRecord(id=uuid4(), name="Guild", entity_type="faction")
    everyone = [viktor, tavern, keep, guild]
    located_at = uuid4()
    edges = [_edge(viktor.id, tavern.id, located_at), _edge(guild.id, viktor.id, uuid4())]
    suggestions = [_suggestion(viktor, keep, "located_at"), _suggestion(viktor, tavern, "owns")]

    findings = check_graph_health(
        [viktor, guild], everyone, edges, {located_at: "located_at"},
        GraphRules.from_schema(ONTOLOGY), suggestions, campaign_types={"located_at", "headquartered_at"},
    )

    by_kind = {}
    for f in findings:
        by_kind.setdefault(f.payload.warning, []).append(f)
    assert set(by_kind) == {"type_pair", "cardinality", "missing_required"}
    assert by_kind["type_pair"][0].matched_text == "Viktor owns Tavern"
    assert [f.entity_id for f in by_kind["cardinality"]] == [viktor.id]
    assert by_kind["cardinality"][0].payload.relationship_types == ["located_at"]
    missing = by_kind["missing_required"]
    assert [(f.entity_id, f.payload.relationship_types) for f in missing] == [(guild.id, ["headquartered_at"])]


def test_rules_without_matching_data_add_nothing():
    viktor = EntityRecord(id=uuid4(), name="Viktor", entity_type="npc")
    lantern = EntityRecord(id=uuid4(), name="Lantern", entity_type="item")

    findings = check_graph_health(
        [viktor], [viktor, lantern], [], {}, GraphRules.from_schema(ONTOLOGY),
        [_suggestion(viktor, lantern, "owns"), _suggestion(viktor, lantern, "knows")],
    )

    assert [f.payload.warning for f in findings] == ["orphan"]
