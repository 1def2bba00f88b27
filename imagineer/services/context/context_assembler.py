"""Retrieval context for LLM phases: similar campaign passages plus the game-system schema.

Both halves are optional. When the vector index or the schema file is
unavailable the bundle is simply emptier, never an error.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import yaml

from imagineer.core.config import settings
from imagineer.repositories.content_chunk_repository import ContentChunkRepository
from imagineer.services.campaign.contracts import CampaignStore, SearchHit
from imagineer.services.context.embedding import embed_texts
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

SUMMARY_QUERY_CHARS = 150
ENTITY_BATCH_SIZE = 5
RESULTS_PER_QUERY = 10
MAX_CHUNK_CHARS = 1000

_GAME_SYSTEM_CODE = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass
class ContextBundle:
    passages: List[SearchHit] = field(default_factory=list)
    game_system_schema: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.passages and not self.game_system_schema

    def render_passages(self) -> str:
        """Passages formatted for a prompt section."""
        if not self.passages:
            return ""
        lines = []
        for hit in self.passages:
            lines.append(f"[{hit.source_table}] {hit.snippet.strip()}")
        return "\n\n".join(lines)


def build_search_queries(query: str, entity_names: Sequence[str]) -> List[str]:
    """A content-summary query followed by batched entity-name queries."""
    names = [n for n in entity_names if n]
    queries = []

    summary = query[:SUMMARY_QUERY_CHARS].strip()
    if summary:
        lowered = query.lower()
        mentioned = [n for n in names if n.lower() in lowered][:ENTITY_BATCH_SIZE]
        if mentioned:
            summary = f"{summary} {', '.join(mentioned)}"
        queries.append(summary)

    for i in range(0, len(names), ENTITY_BATCH_SIZE):
        queries.append(", ".join(names[i:i + ENTITY_BATCH_SIZE]))
    return queries


def estimate_tokens(text: str, tokens_per_char: float) -> float:
    return len(text) * tokens_per_char


def deduplicate_and_trim(
    hits: Sequence[SearchHit],
    token_budget: int,
    tokens_per_char: float,
    top_k: int,
) -> List[SearchHit]:
    """Keep the best hit per source, best first, within budget and top_k.

    The first passage is always kept even when it alone exceeds the budget.
    """
    best: Dict[Tuple[str, UUID], SearchHit] = {}
    for hit in hits:
        key = (hit.source_table, hit.source_id)
        current = best.get(key)
        if current is None or hit.score > current.score:
            best[key] = hit

    ranked = sorted(best.values(), key=lambda h: h.score, reverse=True)
    trimmed: List[SearchHit] = []
    total = 0.0
    for hit in ranked:
        tokens = estimate_tokens(hit.snippet, tokens_per_char)
        if trimmed and total + tokens > token_budget:
            break
        trimmed.append(hit)
        total += tokens
        if len(trimmed) >= top_k:
            break
    return trimmed


def load_game_system_schema(code: Optional[str], schemas_dir: Optional[str] = None) -> str:
    """Raw YAML text of a game-system schema, or "" if unusable."""
    if not code:
        return ""
    if not _GAME_SYSTEM_CODE.match(code):
        LOGGER.warning("Invalid game system code", extra={"game_system_code": code})
        return ""

    path = Path(schemas_dir or settings.pipeline.schemas_dir) / f"{code}.yaml"
    try:
        raw = path.read_text(encoding="utf-8")
        yaml.safe_load(raw)
    except OSError as e:
        LOGGER.warning(f"Game system schema not readable: {e}", extra={"path": str(path)})
        return ""
    except yaml.YAMLError as e:
        LOGGER.warning(f"Game system schema is not valid YAML: {e}", extra={"path": str(path)})
        return ""
    return raw


class ContextAssembler:
    """Builds a bounded ContextBundle for one analysis unit."""

    def __init__(
        self,
        store: CampaignStore,
        top_k: Optional[int] = None,
        token_budget: Optional[int] = None,
        tokens_per_char: Optional[float] = None,
        schemas_dir: Optional[str] = None,
    ):
        self.store = store
        self.top_k = top_k or settings.pipeline.rag_top_k
        self.token_budget = token_budget or settings.pipeline.rag_token_budget
        self.tokens_per_char = tokens_per_char or settings.pipeline.rag_tokens_per_char
        self.schemas_dir = schemas_dir or settings.pipeline.schemas_dir

    async def build(
        self,
        campaign_id: UUID,
        query: str,
        entity_names: Sequence[str] = (),
        game_system_code: Optional[str] = None,
    ) -> ContextBundle:
        hits: List[SearchHit] = []
        for search_query in build_search_queries(query, entity_names):
            try:
                hits.extend(
                    await self.store.search_campaign_content(campaign_id, search_query, RESULTS_PER_QUERY)
                )
            except Exception as e:
                LOGGER.warning(
                    f"Campaign content search failed, continuing without it: {e}",
                    extra={"campaign_id": str(campaign_id), "query": search_query[:200]},
                )

        passages = deduplicate_and_trim(hits, self.token_budget, self.tokens_per_char, self.top_k)
        bundle = ContextBundle(
            passages=passages,
            game_system_schema=load_game_system_schema(game_system_code, self.schemas_dir),
        )
        LOGGER.debug(
            "Context bundle assembled",
            extra={
                "campaign_id": str(campaign_id),
                "passages": len(bundle.passages),
                "has_schema": bool(bundle.game_system_schema),
            },
        )
        return bundle


def split_into_chunks(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """Paragraph chunks no longer than ``max_chars``.

    Paragraphs are packed together while they fit. A single paragraph
    longer than the limit is cut at whitespace.
    """
    chunks: List[str] = []
    current = ""
    for paragraph in (p.strip() for p in re.split(r"\n\s*\n", text)):
        if not paragraph:
            continue
        while len(paragraph) > max_chars:
            cut = paragraph.rfind(" ", 0, max_chars)
            if cut <= 0:
                cut = max_chars
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:cut].strip())
            paragraph = paragraph[cut:].strip()
        if not paragraph:
            continue
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= max_chars:
            current = candidate
        else:
            chunks.append(current)
            current = paragraph
    if current:
        chunks.append(current)
    return chunks


class ContentIndexer:
    """Keeps the content_chunks index in step with analysed text fields."""

    def __init__(self, chunk_repository: ContentChunkRepository):
        self.chunk_repository = chunk_repository

    async def index_source(
        self,
        campaign_id: UUID,
        source_table: str,
        source_id: UUID,
        source_field: str,
        text: str,
    ) -> int:
        """Re-embed one source field. Failures are logged and reported as 0."""
        try:
            chunks = split_into_chunks(text or "")
            vectors = await embed_texts(chunks)
            count = await self.chunk_repository.replace_for_source(
                campaign_id, source_table, source_id, source_field, list(zip(chunks, vectors))
            )
        except Exception as e:
            LOGGER.warning(
                f"Content indexing failed: {e}",
                extra={"source_table": source_table, "source_id": str(source_id)},
            )
            return 0

        LOGGER.info(
            "Content indexed",
            extra={"source_table": source_table, "source_id": str(source_id), "chunks": count},
        )
        return count
