"""Rewrite source text when an identification item is accepted or reverted."""

from dataclasses import dataclass
from typing import Optional

from imagineer.core.exceptions import ValidationError
from imagineer.schemas.analysis import DetectionType
from imagineer.services.identification.engine import WIKI_LINK_RE, mask_wiki_links, wiki_link_text

RELOCATE_RADIUS = 50

_WIKI_LINK_TYPES = {DetectionType.WIKI_LINK_RESOLVED, DetectionType.WIKI_LINK_UNRESOLVED}


@dataclass
class TextEdit:
    content: str
    start: int
    old_length: int
    new_length: int

    @property
    def delta(self) -> int:
        return self.new_length - self.old_length


def original_text(detection_type: DetectionType, matched_text: str, display_text: Optional[str]) -> str:
    """The exact text an identification item points at in the content."""
    if detection_type in _WIKI_LINK_TYPES:
        return wiki_link_text(matched_text, display_text)
    return matched_text


def replacement_token(
    detection_type: DetectionType,
    matched_text: str,
    entity_name: str,
    display_text: Optional[str] = None,
) -> str:
    """Canonical reference token that replaces an accepted span."""
    if detection_type == DetectionType.POTENTIAL_ALIAS:
        return f"[[{entity_name}|{matched_text}]]"
    if detection_type in _WIKI_LINK_TYPES and display_text:
        return f"[[{entity_name}|{display_text}]]"
    return f"[[{entity_name}]]"


def _locate(content: str, start: int, end: int, expected: str) -> int:
    if 0 <= start <= len(content) and content[start:end] == expected:
        return start

    lo = max(0, start - RELOCATE_RADIUS)
    hi = min(len(content), end + RELOCATE_RADIUS)
    window = content[lo:hi]
    best = None
    idx = window.find(expected)
    while idx >= 0:
        candidate = lo + idx
        if best is None or abs(candidate - start) < abs(best - start):
            best = candidate
        idx = window.find(expected, idx + 1)
    if best is not None:
        return best

    # Outside links only, so an already-linked occurrence is never rewritten
    search_in = content if expected.startswith("[[") else mask_wiki_links(content)
    idx = search_in.find(expected)
    if idx >= 0:
        return idx
    raise ValidationError(
        f"'{expected}' is no longer present in the content; re-run identification"
    )


def apply_reference(content: str, start: int, end: int, expected: str, replacement: str) -> TextEdit:
    """Replace ``expected`` with ``replacement`` at, near, or failing that anywhere in ``content``.

    Raises:
        ValidationError: If the expected text cannot be found (stale item)
    """
    at = _locate(content, start, end, expected)
    new_content = content[:at] + replacement + content[at + len(expected):]
    return TextEdit(content=new_content, start=at, old_length=len(expected), new_length=len(replacement))


def revert_reference(content: str, start: int, plain_text: str) -> TextEdit:
    """Swap the link nearest ``start`` (within the relocation radius) back to ``plain_text``.

    Raises:
        ValidationError: If no link is close enough
    """
    nearest = None
    for m in WIKI_LINK_RE.finditer(content):
        offset = abs(m.start() - start)
        if offset <= RELOCATE_RADIUS and (nearest is None or offset < abs(nearest.start() - start)):
            nearest = m
    if nearest is None:
        raise ValidationError("No reference token found near the item position")

    new_content = content[:nearest.start()] + plain_text + content[nearest.end():]
    return TextEdit(
        content=new_content,
        start=nearest.start(),
        old_length=nearest.end() - nearest.start(),
        new_length=len(plain_text),
    )
