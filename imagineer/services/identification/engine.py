"""Phase 1: find entity references in text without calling an LLM.

Three scans run over the content:

1. Explicit ``[[Name]]`` / ``[[Name|display]]`` links, classified against
   the campaign's entity names.
2. Plain, untagged mentions of known names (word-bounded, any case).
3. Capitalised phrases that are close to, but not exactly, a known name:
   likely misspellings or partial aliases.

Link spans are blanked out before scans 2 and 3 so offsets always refer
to the original content.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from imagineer.core.config import settings
from imagineer.schemas.analysis import DetectionType, Phase, ReferencePayload, dump_payload
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

WIKI_LINK_RE = re.compile(r"\[\[([^\]|]+?)(?:\|([^\]]*?))?\]\]")
CAPITALIZED_PHRASE_RE = re.compile(r"[A-Z][a-zA-Z'-]*(?:\s+[A-Za-z][a-zA-Z'-]*){0,3}")
WORD_RE = re.compile(r"[A-Za-z][a-zA-Z'-]*")

SCORERS: Dict[str, Callable[[str, str], float]] = {
    "ratio": fuzz.ratio,
    "token_sort_ratio": fuzz.token_sort_ratio,
    "partial_ratio": fuzz.partial_ratio,
}


@dataclass
class IdentificationConfig:
    resolved_threshold: float = 0.9
    minimum_threshold: float = 0.4
    min_mention_length: int = 3
    max_misspelling_candidates: int = 20
    snippet_radius: int = 50
    scorer: str = "ratio"

    @classmethod
    def from_settings(cls) -> "IdentificationConfig":
        p = settings.pipeline
        return cls(
            resolved_threshold=p.similarity_resolved_threshold,
            minimum_threshold=p.similarity_minimum_threshold,
            min_mention_length=p.min_mention_length,
            max_misspelling_candidates=p.max_misspelling_candidates,
            snippet_radius=p.context_snippet_radius,
            scorer=p.similarity_scorer,
        )


@dataclass
class EntityMatch:
    entity: object
    similarity: float
    distance: int


@dataclass
class IdentifiedSpan:
    """A detected reference; ``start``/``end`` index the original content."""

    detection_type: DetectionType
    matched_text: str
    start: int
    end: int
    context_snippet: str
    entity_id: Optional[UUID] = None
    entity_name: Optional[str] = None
    confidence: Optional[float] = None
    display_text: Optional[str] = None
    edit_distance: Optional[int] = None

    def to_item_row(self, job_id: UUID) -> dict:
        payload = ReferencePayload(
            entity_name=self.entity_name,
            display_text=self.display_text,
            edit_distance=self.edit_distance,
        )
        return {
            "job_id": job_id,
            "phase": Phase.IDENTIFICATION.value,
            "detection_type": self.detection_type.value,
            "matched_text": self.matched_text,
            "entity_id": self.entity_id,
            "suggested_content": dump_payload(payload),
            "confidence": self.confidence,
            "position_start": self.start,
            "position_end": self.end,
            "context_snippet": self.context_snippet,
        }


def similarity(a: str, b: str, scorer: str = "ratio") -> float:
    """Case-insensitive similarity in [0, 1]."""
    score = SCORERS.get(scorer, fuzz.ratio)
    return score(a.lower(), b.lower()) / 100.0


def best_entity_match(text: str, entities: Iterable, scorer: str = "ratio") -> Optional[EntityMatch]:
    """Highest similarity wins, then smaller edit distance, then lower entity id."""
    best_key = None
    best = None
    lowered = text.lower()
    for entity in entities:
        if not entity.name:
            continue
        name = entity.name.lower()
        sim = similarity(lowered, name, scorer)
        dist = Levenshtein.distance(lowered, name)
        key = (-sim, dist, str(entity.id))
        if best_key is None or key < best_key:
            best_key = key
            best = EntityMatch(entity=entity, similarity=sim, distance=dist)
    return best


def context_snippet(content: str, start: int, end: int, radius: int) -> str:
    return content[max(0, start - radius):min(len(content), end + radius)]


def mask_wiki_links(content: str) -> str:
    """Replace every link span with spaces of equal length."""
    return WIKI_LINK_RE.sub(lambda m: " " * len(m.group(0)), content)


def wiki_link_text(name: str, display: Optional[str]) -> str:
    """Rebuild the raw link from its parts."""
    return f"[[{name}|{display}]]" if display is not None else f"[[{name}]]"


def _words(text: str) -> List[str]:
    return text.lower().split()


def is_partial_alias(phrase: str, entity_name: str) -> bool:
    """True when the phrase's words are a strict subset of the name's words."""
    phrase_words = set(_words(phrase))
    name_words = set(_words(entity_name))
    return bool(phrase_words) and phrase_words < name_words


def _overlaps(start: int, end: int, spans: Sequence[Tuple[int, int]]) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


def scan_wiki_links(content: str, entities: Sequence, config: IdentificationConfig) -> List[IdentifiedSpan]:
    spans = []
    for m in WIKI_LINK_RE.finditer(content):
        name = m.group(1)
        match = best_entity_match(name.strip(), entities, config.scorer)
        span = IdentifiedSpan(
            detection_type=DetectionType.WIKI_LINK_UNRESOLVED,
            matched_text=name,
            start=m.start(),
            end=m.end(),
            context_snippet=context_snippet(content, m.start(), m.end(), config.snippet_radius),
            display_text=m.group(2),
        )
        if match and match.similarity >= config.minimum_threshold:
            span.entity_id = match.entity.id
            span.entity_name = match.entity.name
            span.confidence = round(match.similarity, 4)
            span.edit_distance = match.distance
            if match.similarity >= config.resolved_threshold:
                span.detection_type = DetectionType.WIKI_LINK_RESOLVED
        spans.append(span)
    return spans


def scan_untagged_mentions(
    content: str,
    masked: str,
    entities: Sequence,
    skip_entity_ids: Set[UUID],
    config: IdentificationConfig,
) -> List[IdentifiedSpan]:
    spans = []
    for entity in entities:
        name = (entity.name or "").strip()
        if len(name) < config.min_mention_length or entity.id in skip_entity_ids:
            continue
        pattern = re.compile(r"(?<!\w)" + re.escape(name) + r"(?!\w)", re.IGNORECASE)
        m = pattern.search(masked)
        if m is None:
            continue
        spans.append(IdentifiedSpan(
            detection_type=DetectionType.UNTAGGED_MENTION,
            matched_text=content[m.start():m.end()],
            start=m.start(),
            end=m.end(),
            context_snippet=context_snippet(content, m.start(), m.end(), config.snippet_radius),
            entity_id=entity.id,
            entity_name=entity.name,
            confidence=1.0,
            edit_distance=0,
        ))
    return spans


def _word_spans(masked: str, start: int, end: int, max_words: int) -> Iterable[Tuple[int, int]]:
    """Contiguous runs of up to ``max_words`` words that start on a capital."""
    words = [(start + w.start(), start + w.end()) for w in WORD_RE.finditer(masked[start:end])]
    for i, (span_start, _) in enumerate(words):
        if not masked[span_start].isupper():
            continue
        for j in range(i, min(len(words), i + max_words)):
            yield span_start, words[j][1]


def scan_misspellings(
    content: str,
    masked: str,
    entities: Sequence,
    taken: Sequence[Tuple[int, int]],
    matched_names: Set[str],
    config: IdentificationConfig,
) -> List[IdentifiedSpan]:
    """Score each capitalised phrase by its best word sub-span.

    Only that sub-span is reported, so accepting the item rewrites the
    misspelled name and none of the words that follow it.
    """
    max_words = max((len(_words(e.name)) for e in entities if e.name), default=1)
    spans: List[IdentifiedSpan] = []
    for m in CAPITALIZED_PHRASE_RE.finditer(masked):
        if len(spans) >= config.max_misspelling_candidates:
            break
        best_key = None
        best = None
        for start, end in _word_spans(masked, m.start(), m.end(), max_words):
            text = masked[start:end]
            if len(text) < 2 or text.lower() in matched_names or _overlaps(start, end, taken):
                continue
            match = best_entity_match(text, entities, config.scorer)
            if match is None:
                continue
            key = (-match.similarity, match.distance, start, end)
            if best_key is None or key < best_key:
                best_key = key
                best = (start, end, match)
        if best is None:
            continue
        start, end, match = best
        if not (config.minimum_threshold <= match.similarity < config.resolved_threshold):
            continue
        phrase = content[start:end]
        detection_type = (
            DetectionType.POTENTIAL_ALIAS
            if is_partial_alias(phrase, match.entity.name)
            else DetectionType.MISSPELLING
        )
        spans.append(IdentifiedSpan(
            detection_type=detection_type,
            matched_text=phrase,
            start=start,
            end=end,
            context_snippet=context_snippet(content, start, end, config.snippet_radius),
            entity_id=match.entity.id,
            entity_name=match.entity.name,
            confidence=round(match.similarity, 4),
            edit_distance=match.distance,
        ))
    return spans


def identify(
    content: str,
    entities: Sequence,
    resolved_references: Iterable[Tuple[str, str]] = (),
    config: Optional[IdentificationConfig] = None,
) -> List[IdentifiedSpan]:
    """Detect entity references in ``content``.

    Args:
        content: Source text
        entities: Known entities (objects with ``id`` and ``name``)
        resolved_references: (detection_type, lower(matched_text)) pairs the
            user already resolved; matching spans are not reported again
        config: Thresholds and limits; defaults come from settings

    Returns:
        Spans ordered by start position
    """
    config = config or IdentificationConfig.from_settings()
    if not content:
        return []

    links = scan_wiki_links(content, entities, config)
    resolved_ids = {
        s.entity_id for s in links if s.detection_type == DetectionType.WIKI_LINK_RESOLVED
    }
    masked = mask_wiki_links(content)

    mentions = scan_untagged_mentions(content, masked, entities, resolved_ids, config)
    matched_names = {s.matched_text.lower() for s in links if s.entity_id in resolved_ids}
    matched_names.update(s.matched_text.lower() for s in mentions)
    taken = [(s.start, s.end) for s in mentions]

    near_misses = scan_misspellings(content, masked, entities, taken, matched_names, config)

    suppressed = {(dt, text.lower()) for dt, text in resolved_references}
    spans = [
        s for s in links + mentions + near_misses
        if (s.detection_type.value, s.matched_text.lower()) not in suppressed
    ]
    spans.sort(key=lambda s: (s.start, s.end))

    LOGGER.debug(
        "Identification complete",
        extra={
            "wiki_links": len(links),
            "untagged_mentions": len(mentions),
            "near_misses": len(near_misses),
            "suppressed": len(links) + len(mentions) + len(near_misses) - len(spans),
        },
    )
    return spans
