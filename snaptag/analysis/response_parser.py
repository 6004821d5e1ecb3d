"""
Parsing of free-form model output into ExtractedResult.

Every backend that returns generated text goes through this module. Models
are asked for a JSON object like::

    {"analysis": "...", "tags": {"objects": [...], "scene": [...],
     "attributes": [...], "mood": [...]}, "description": "..."}

but small models wrap it in Markdown fences, prepend chatter, use a flat
``tags`` list, or invent their own categories. ``parse_model_response``
copes with all of these; ``parse_plain_text`` is the last resort for output
that is not JSON at all.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..core.types import PLAIN_TEXT_CONFIDENCE, ExtractedResult

logger = logging.getLogger(__name__)

# Order in which categorized tags are flattened
TAG_CATEGORIES = ("objects", "scene", "attributes", "mood")

# Plain-text tokens at least this long are sentences, not tags
MAX_PLAIN_TAG_LENGTH = 30

BULLET_PREFIXES = ("-", "*", "•")

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TAGS_ARRAY_PATTERN = re.compile(r'"tags"\s*:\s*\[([^\]]+)\]', re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Return the body of the first Markdown code block, or the text unchanged."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1)
    return text


def extract_json_object(text: str) -> Optional[str]:
    """Slice from the first '{' to the last '}'."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def flatten_tags(raw_tags: Any) -> List[str]:
    """Flatten a flat tag list or a category map into one list.

    Known categories are concatenated in a fixed order. A map using only
    unknown categories falls back to concatenating all of its list values.
    """
    if isinstance(raw_tags, list):
        return [t for t in raw_tags if isinstance(t, str)]

    if not isinstance(raw_tags, dict):
        return []

    tags: List[str] = []
    for category in TAG_CATEGORIES:
        values = raw_tags.get(category)
        if isinstance(values, list):
            tags.extend(t for t in values if isinstance(t, str))

    if not tags:
        for values in raw_tags.values():
            if isinstance(values, list):
                tags.extend(t for t in values if isinstance(t, str))

    return tags


def parse_model_response(response: str) -> ExtractedResult:
    """Parse a model's JSON answer.

    Args:
        response: Raw generated text

    Returns:
        ExtractedResult with derived confidence, or an empty result when the
        text holds no parseable JSON object
    """
    candidate = extract_json_object(strip_code_fences(response))
    if candidate is None:
        logger.debug(f"No JSON object in model response: {response[:200]!r}")
        return ExtractedResult.empty()

    try:
        data: Dict[str, Any] = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug(f"Failed to parse model response as JSON: {e}")
        return ExtractedResult.empty()

    if not isinstance(data, dict):
        return ExtractedResult.empty()

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        description = None

    return ExtractedResult.from_tags(flatten_tags(data.get("tags")), description)


def _clean_token(token: str) -> str:
    return token.strip().strip("\"'").strip()


def parse_plain_text(text: str) -> ExtractedResult:
    """Scrape tags from output that is not valid JSON.

    Tries, in order: a ``"tags": [...]`` fragment, bullet lines, and
    comma-separated tokens. Results carry a fixed low confidence.
    """
    tags: List[str] = []

    match = _TAGS_ARRAY_PATTERN.search(text)
    if match:
        tags = [t for t in (_clean_token(p) for p in match.group(1).split(",")) if t]

    if not tags:
        for line in text.splitlines():
            stripped = line.strip()
            if stripped.startswith(BULLET_PREFIXES):
                tag = _clean_token(stripped[1:])
                if tag and len(tag) < MAX_PLAIN_TAG_LENGTH:
                    tags.append(tag)

    if not tags and ("," in text or "、" in text):
        for part in text.replace("、", ",").split(","):
            tag = _clean_token(part)
            if tag and len(tag) < MAX_PLAIN_TAG_LENGTH:
                tags.append(tag)

    if not tags:
        return ExtractedResult.empty()

    return ExtractedResult(tags=tags, confidence=PLAIN_TEXT_CONFIDENCE)


def parse_with_fallback(response: str) -> ExtractedResult:
    """Parse JSON output, falling back to plain-text scraping."""
    result = parse_model_response(response)
    if result.has_valid_data:
        return result
    logger.debug("JSON parse produced no data, using plain-text fallback")
    return parse_plain_text(response)
