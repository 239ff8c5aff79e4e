"""JSON extraction from LLM responses: fence stripping, strict parse, brace scan."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*|```")


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences (```json ... ```) and surrounding space."""
    if not text:
        return ""
    return _FENCE_RE.sub("", text).strip()


def parse_json_strict(text: str) -> dict | list | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError, TypeError):
        return None


def extract_first_object(text: str) -> dict | None:
    """Return the first brace-balanced ``{...}`` block in *text* that parses."""
    if not text:
        return None
    for i, ch in enumerate(text):
        if ch != "{":
            continue
        result = _extract_balanced(text, i, "{", "}")
        if isinstance(result, dict):
            return result
    return None


def extract_json(text: str) -> dict | list | None:
    """Try to extract the first valid JSON object or array from *text*.

    Strategy:
    1. Strip code fences and attempt ``json.loads`` (fast path).
    2. Slide through the text looking for ``{`` or ``[`` and attempt
       brace-balanced extraction.
    3. Return ``None`` if nothing works.
    """
    if not text or not text.strip():
        return None

    stripped = strip_code_fences(text)

    parsed = parse_json_strict(stripped)
    if parsed is not None:
        return parsed

    for i, ch in enumerate(stripped):
        if ch == "{":
            result = _extract_balanced(stripped, i, "{", "}")
            if result is not None:
                return result
        elif ch == "[":
            result = _extract_balanced(stripped, i, "[", "]")
            if result is not None:
                return result

    logger.debug("No JSON found in %d chars of model output", len(text))
    return None


def _extract_balanced(text: str, start: int, open_ch: str, close_ch: str) -> dict | list | None:
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return parse_json_strict(text[start : i + 1])

    return None
