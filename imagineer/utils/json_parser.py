import json
from typing import Any, Dict, List, Optional, Union

from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

_DECODER = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_safely(text: Optional[str]) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from model output, tolerating common formatting noise.

    Handles markdown code fences, leading prose before the payload and
    trailing text after it. Only the first complete JSON value is decoded.

    Args:
        text: Raw completion text

    Returns:
        Parsed JSON object or list, or None if nothing parseable was found
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Direct JSON parse failed: {e}, scanning for embedded payload")

    for opener in ("{", "["):
        start = cleaned.find(opener)
        while start != -1:
            try:
                value, _ = _DECODER.raw_decode(cleaned, start)
                return value
            except json.JSONDecodeError:
                start = cleaned.find(opener, start + 1)

    LOGGER.warning(
        "Failed to parse JSON from completion",
        extra={"preview": cleaned[:200]},
    )
    return None


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Like parse_json_safely, but only accepts a JSON object."""
    parsed = parse_json_safely(text)
    if isinstance(parsed, dict):
        return parsed
    return None
