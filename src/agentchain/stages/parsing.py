"""
LLM response parsing helpers.

Responses carry no structural guarantee. Every helper here either returns a
usable value or raises MalformedUpstreamOutput so the calling stage can fall
back to a safe default.
"""

from __future__ import annotations

import json
import re
from typing import Any

from agentchain.exceptions import MalformedUpstreamOutput

_HEADER = r"^[ \t]*[A-Z][A-Z _]{2,}:"
_NUMBERED_ITEM = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$", re.M)
_BULLET_ITEM = re.compile(r"^\s*[-*•]\s+(.+?)\s*$", re.M)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def clamp(value: Any, low: float = 0.0, high: float = 1.0, default: float = 0.5) -> float:
    """Coerce to float within [low, high]; non-numeric values become ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def extract_section(text: str, name: str) -> str:
    """
    Text following ``NAME:`` up to the next upper-case header or the end.

    Returns an empty string when the section is absent.
    """
    pattern = re.compile(
        rf"^[ \t]*{re.escape(name)}:[ \t]*(.*?)(?={_HEADER}|\Z)",
        re.M | re.S,
    )
    match = pattern.search(text or "")
    return match.group(1).strip() if match else ""


def extract_list(text: str) -> list[str]:
    """Numbered items, else bullet items, else non-empty lines."""
    if not text:
        return []
    numbered = _NUMBERED_ITEM.findall(text)
    if numbered:
        return [item.strip() for item in numbered if item.strip()]
    bullets = _BULLET_ITEM.findall(text)
    if bullets:
        return [item.strip() for item in bullets if item.strip()]
    return [line.strip() for line in text.splitlines() if line.strip()]


def _balanced_object(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_object(text: str) -> dict[str, Any]:
    """
    First balanced JSON object in the text.

    Tolerates surrounding prose, code fences and trailing commas.

    Raises:
        MalformedUpstreamOutput: If no object can be decoded
    """
    if not text:
        raise MalformedUpstreamOutput("Empty response")

    start = text.find("{")
    while start != -1:
        candidate = _balanced_object(text, start)
        if candidate is None:
            break
        for attempt in (candidate, _TRAILING_COMMA.sub(r"\1", candidate)):
            try:
                decoded = json.loads(attempt)
            except ValueError:
                continue
            if isinstance(decoded, dict):
                return decoded
        start = text.find("{", start + 1)

    raise MalformedUpstreamOutput("No JSON object found in response")


def as_str_list(value: Any) -> list[str]:
    """Coerce a JSON value into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


def pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among snake_case/camelCase spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default
