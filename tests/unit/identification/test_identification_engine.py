"""Tests for deterministic entity-reference detection."""

from uuid import UUID, uuid4

import pytest

from imagineer.schemas.analysis import DetectionType
from imagineer.services.campaign.contracts import EntityRecord
from imagineer.services.identification.engine import (
    IdentificationConfig,
    best_entity_match,
    identify,
    is_partial_alias,
    mask_wiki_links,
)


@pytest.fixture
def config() -> IdentificationConfig:
    return IdentificationConfig()


@pytest.fixture
def viktor() -> EntityRecord:
    return EntityRecord(id=uuid4(), name="Viktor", entity_type="npc")


class TestUntaggedMentions:
    def test_plain_mention_becomes_single_item(self, viktor, config):
        spans = identify("Viktor enters the tavern", [viktor], config=config)

        assert len(spans) == 1
        span = spans[0]
        assert span.detection_type == DetectionType.UNTAGGED_MENTION
        assert span.matched_text == "Viktor"
        assert (span.start, span.end) == (0, 6)
        assert span.entity_id == viktor.id
        assert span.confidence == 1.0

    def test_mention_is_case_insensitive_and_keeps_original_casing(self, viktor, config):
        spans = identify("then viktor left", [viktor], config=config)

        assert [s.matched_text for s in spans] == ["viktor"]
        assert spans[0].start == 5

    def test_mention_must_be_word_bounded(self, config):
        ann = EntityRecord(id=uuid4(), name="Ann")

        assert identify("the annual meeting", [ann], config=config) == []

    def test_names_shorter_than_minimum_are_ignored(self, config):
        al = EntityRecord(id=uuid4(), name="Al")

        assert identify("Al.", [al], config=config) == []

    def test_empty_content_yields_nothing(self, viktor, config):
        assert identify("", [viktor], config=config) == []


class TestWikiLinks:
    def test_exact_link_is_resolved(self, viktor, config):
        spans = identify("[[Viktor]] waits.", [viktor], config=config)

        assert len(spans) == 1
        assert spans[0].detection_type == DetectionType.WIKI_LINK_RESOLVED
        assert spans[0].matched_text == "Viktor"
        assert (spans[0].start, spans[0].end) == (0, 10)
        assert spans[0].entity_id == viktor.id

    def test_link_to_unknown_name_is_unresolved(self, viktor, config):
        spans = identify("[[Bob]] waits.", [viktor], config=config)

        assert len(spans) == 1
        assert spans[0].detection_type == DetectionType.WIKI_LINK_UNRESOLVED
        assert spans[0].entity_id is None

    def test_near_miss_link_keeps_its_candidate(self, viktor, config):
        spans = identify("[[Vktr]] waits.", [viktor], config=config)

        assert spans[0].detection_type == DetectionType.WIKI_LINK_UNRESOLVED
        assert spans[0].entity_id == viktor.id
        assert spans[0].confidence == pytest.approx(0.8)

    def test_display_text_is_captured(self, viktor, config):
        spans = identify("[[Viktor|the old man]] waits.", [viktor], config=config)

        assert spans[0].display_text == "the old man"
        assert spans[0].detection_type == DetectionType.WIKI_LINK_RESOLVED

    def test_linked_entity_is_not_reported_again_as_mention(self, viktor, config):
        spans = identify("[[Viktor]] met Viktor.", [viktor], config=config)

        assert [s.detection_type for s in spans] == [DetectionType.WIKI_LINK_RESOLVED]

    def test_mask_preserves_offsets(self):
        content = "a [[Viktor]] b"
        masked = mask_wiki_links(content)

        assert len(masked) == len(content)
        assert masked == "a" + " " * 12 + "b"


class TestNearMisses:
    def test_misspelling(self, viktor, config):
        spans = identify("Vktr, the old guard.", [viktor], config=config)

        assert len(spans) == 1
        span = spans[0]
        assert span.detection_type == DetectionType.MISSPELLING
        assert span.matched_text == "Vktr"
        assert span.entity_id == viktor.id
        assert span.edit_distance == 2
        assert 0.4 <= span.confidence < 0.9

    def test_misspelling_excludes_following_words(self, viktor, config):
        spans = identify("Later, Vktr walked in.", [viktor], config=config)

        assert [(s.detection_type, s.matched_text) for s in spans] == [(DetectionType.MISSPELLING, "Vktr")]
        assert (spans[0].start, spans[0].end) == (7, 11)

    def test_multi_word_misspelling_inside_longer_phrase(self, viktor, config):
        mira = EntityRecord(id=uuid4(), name="Mira Vale")

        spans = identify("Ask Mira Vael about it.", [viktor, mira], config=config)

        assert len(spans) == 1
        assert spans[0].matched_text == "Mira Vael"
        assert (spans[0].start, spans[0].end) == (4, 13)
        assert spans[0].entity_id == mira.id

    def test_partial_alias(self, config):
        grey = EntityRecord(id=uuid4(), name="Viktor Grey")

        spans = identify("Grey, at last.", [grey], config=config)

        assert len(spans) == 1
        assert spans[0].detection_type == DetectionType.POTENTIAL_ALIAS
        assert spans[0].entity_name == "Viktor Grey"

    def test_is_partial_alias_requires_strict_subset(self):
        assert is_partial_alias("Grey", "Viktor Grey")
        assert not is_partial_alias("Viktor Grey", "Viktor Grey")
        assert not is_partial_alias("Grey Wolf", "Viktor Grey")


class TestSuppressionAndOrdering:
    def test_resolved_references_are_not_reported_again(self, viktor, config):
        resolved = {(DetectionType.UNTAGGED_MENTION.value, "viktor")}

        assert identify("Viktor enters the tavern", [viktor], resolved, config=config) == []

    def test_spans_are_ordered_by_position(self, viktor, config):
        mira = EntityRecord(id=uuid4(), name="Mira")

        spans = identify("[[Bob]] saw Mira and then viktor", [viktor, mira], config=config)

        starts = [s.start for s in spans]
        assert starts == sorted(starts)
        assert [s.matched_text for s in spans] == ["Bob", "Mira", "viktor"]

    def test_item_row_carries_reference_payload(self, viktor, config):
        job_id = uuid4()
        row = identify("Viktor enters", [viktor], config=config)[0].to_item_row(job_id)

        assert row["job_id"] == job_id
        assert row["phase"] == "identification"
        assert row["detection_type"] == "untagged_mention"
        assert row["suggested_content"]["kind"] == "reference"
        assert row["suggested_content"]["entity_name"] == "Viktor"
        assert row["position_start"] == 0
        assert row["position_end"] == 6


def test_best_match_ties_break_on_entity_id():
    low = EntityRecord(id=UUID("00000000-0000-0000-0000-000000000001"), name="Viktor")
    high = EntityRecord(id=UUID("ffffffff-0000-0000-0000-000000000001"), name="Viktor")

    match = best_entity_match("Viktor", [high, low])

    assert match.entity is low
    assert match.similarity == 1.0
    assert match.distance == 0
