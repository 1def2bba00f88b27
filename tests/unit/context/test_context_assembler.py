"""Tests for retrieval context assembly."""

from uuid import uuid4

import pytest

from imagineer.services.campaign.contracts import SearchHit
from imagineer.services.context.context_assembler import (
    ContextAssembler,
    build_search_queries,
    deduplicate_and_trim,
    load_game_system_schema,
    split_into_chunks,
)


def _hit(score, snippet="text", source_id=None, table="sessions"):
    return SearchHit(source_table=table, source_id=source_id or uuid4(), snippet=snippet, score=score)


class TestSearchQueries:
    def test_summary_query_mentions_present_entities_then_batches(self):
        names = ["Viktor", "Mira", "Orla", "Bram", "Kest", "Lune"]

        queries = build_search_queries("Viktor meets Mira at dusk", names)

        assert queries[0] == "Viktor meets Mira at dusk Viktor, Mira"
        assert queries[1:] == ["Viktor, Mira, Orla, Bram, Kest", "Lune"]

    def test_empty_query_only_batches_names(self):
        assert build_search_queries("", ["Viktor"]) == ["Viktor"]


class TestDeduplicateAndTrim:
    def test_keeps_best_hit_per_source(self):
        source = uuid4()
        hits = [_hit(0.2, source_id=source), _hit(0.9, source_id=source), _hit(0.5)]

        trimmed = deduplicate_and_trim(hits, token_budget=1000, tokens_per_char=0.25, top_k=5)

        assert [h.score for h in trimmed] == [0.9, 0.5]

    def test_respects_top_k(self):
        hits = [_hit(s / 10) for s in range(10)]

        trimmed = deduplicate_and_trim(hits, token_budget=1000, tokens_per_char=0.25, top_k=3)

        assert [h.score for h in trimmed] == [0.9, 0.8, 0.7]

    def test_first_passage_survives_even_over_budget(self):
        hits = [_hit(0.9, snippet="x" * 400), _hit(0.8, snippet="y" * 10)]

        trimmed = deduplicate_and_trim(hits, token_budget=50, tokens_per_char=0.25, top_k=5)

        assert len(trimmed) == 1
        assert trimmed[0].score == 0.9


class TestGameSystemSchema:
    def test_loads_bundled_schema(self):
        assert "Dungeons & Dragons 5th Edition" in load_game_system_schema("dnd-5e")

    def test_rejects_path_like_codes(self, tmp_path):
        (tmp_path / "evil.yaml").write_text("a: 1")

        assert load_game_system_schema("../evil", str(tmp_path)) == ""

    def test_missing_or_invalid_files_yield_empty(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("a: [unclosed")

        assert load_game_system_schema("nope", str(tmp_path)) == ""
        assert load_game_system_schema("broken", str(tmp_path)) == ""
        assert load_game_system_schema(None, str(tmp_path)) == ""


class TestContextAssembler:
    @pytest.mark.asyncio
    async def test_bundle_combines_passages_and_schema(self, store, campaign_id, tmp_path):
        (tmp_path / "mini.yaml").write_text("system: mini\n")
        store.search_hits = [_hit(0.7, snippet="Viktor owns the lantern")]
        assembler = ContextAssembler(store, top_k=3, token_budget=500, tokens_per_char=0.25,
                                     schemas_dir=str(tmp_path))

        bundle = await assembler.build(campaign_id, "Viktor enters", ["Viktor"], "mini")

        assert bundle.render_passages() == "[sessions] Viktor owns the lantern"
        assert bundle.game_system_schema == "system: mini\n"
        assert not bundle.is_empty
        assert store.search_queries == ["Viktor enters Viktor", "Viktor"]

    @pytest.mark.asyncio
    async def test_search_failure_degrades_to_empty_passages(self, store, campaign_id, tmp_path):
        store.search_error = RuntimeError("index offline")
        assembler = ContextAssembler(store, schemas_dir=str(tmp_path))

        bundle = await assembler.build(campaign_id, "Viktor enters", ["Viktor"])

        assert bundle.passages == []
        assert bundle.is_empty


def test_split_into_chunks_packs_paragraphs_and_cuts_long_ones():
    text = "First para.\n\nSecond para.\n\n" + "word " * 50

    chunks = split_into_chunks(text, max_chars=60)

    assert chunks[0] == "First para.\n\nSecond para."
    assert all(len(c) <= 60 for c in chunks)
    assert "".join(chunks[1:]).replace(" ", "") == "word" * 50
