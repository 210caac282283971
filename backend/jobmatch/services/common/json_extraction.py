# jobmatch/services/common/json_extraction.py
"""Best-effort JSON extraction for LLM responses: fenced blocks, balanced-bracket scan,
whole-text parse, then the same layers again on a lightly repaired copy of the text."""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Iterator, List, Literal, Tuple

logger = logging.getLogger("ai.json")

ExpectedShape = Literal["object", "array", "any"]

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001F\u007F]")
_IDENT_RE = re.compile(r"[A-Za-z_]\w*")

PREVIEW_CHARS = 100


class JSONExtractionError(ValueError):
    """Raised when no JSON value of the expected shape can be recovered from the text."""

    def __init__(self, message: str, preview: str = ""):
        super().__init__(message)
        self.preview = preview


def find_balanced_json(text: str, open_char: str, close_char: str) -> List[str]:
    """
    Return every top-level balanced `open_char ... close_char` substring.
    Brackets inside JSON strings (and escaped quotes) are ignored.
    """
    return [candidate for _, candidate in _balanced_spans(text, open_char, close_char)]


def _balanced_spans(text: str, open_char: str, close_char: str) -> List[Tuple[int, str]]:
    results: List[Tuple[int, str]] = []
    depth = 0
    start = -1
    in_string = False
    escape = False
    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            # Quotes only open a string once we are inside a candidate
            if depth > 0:
                in_string = True
            continue
        if ch == open_char:
            if depth == 0:
                start = i
            depth += 1
        elif ch == close_char and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                results.append((start, text[start : i + 1]))
                start = -1
    return results


def _next_significant(text: str, start: int) -> str:
    for ch in text[start:]:
        if not ch.isspace():
            return ch
    return ""


def _repair_structure(text: str) -> str:
    """
    Drop trailing commas and quote bare keys, touching only text outside JSON strings.
    String state is tracked the same way as the balanced scan: quotes open a string
    only inside a bracket.
    """
    out: List[str] = []
    depth = 0
    in_string = False
    escape = False
    prev = ""  # last non-space character written
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                prev = ch
            i += 1
            continue

        if ch == '"' and depth > 0:
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth = max(0, depth - 1)
        elif depth > 0 and ch == "," and _next_significant(text, i + 1) in ("}", "]"):
            i += 1
            continue
        elif depth > 0 and prev in ("{", ","):
            ident = _IDENT_RE.match(text, i)
            if ident is not None:
                word = ident.group(0)
                if _next_significant(text, ident.end()) == ":":
                    word = f'"{word}"'
                out.append(word)
                prev = word[-1]
                i = ident.end()
                continue

        out.append(ch)
        if not ch.isspace():
            prev = ch
        i += 1
    return "".join(out)


def clean_json_string(text: str) -> str:
    """Light repair: control characters -> space, drop trailing commas, quote bare keys."""
    cleaned = _CONTROL_CHARS_RE.sub(" ", text)
    return _repair_structure(cleaned).strip()


def matches_shape(value: Any, expected: ExpectedShape) -> bool:
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, list)
    return True


def _candidates(text: str, expected: ExpectedShape) -> Iterator[str]:
    # 1) fenced code blocks
    for match in _FENCE_RE.finditer(text):
        yield match.group(1).strip()

    # 2) balanced-bracket substrings; for "any" the earliest opening bracket wins,
    # so a bare array is not mistaken for its first element
    spans: List[Tuple[int, str]] = []
    if expected in ("object", "any"):
        spans.extend(_balanced_spans(text, "{", "}"))
    if expected in ("array", "any"):
        spans.extend(_balanced_spans(text, "[", "]"))
    for _, candidate in sorted(spans, key=lambda span: span[0]):
        yield candidate

    # 3) the whole response
    yield text.strip()


def _try_layers(text: str, expected: ExpectedShape) -> tuple[bool, Any]:
    for candidate in _candidates(text, expected):
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if matches_shape(parsed, expected):
            return True, parsed
        logger.debug("Discarding JSON candidate of the wrong shape (expected %s)", expected)
    return False, None


def extract_json(text: str, expected: ExpectedShape = "any") -> Any:
    """
    Extract a JSON value of the expected shape from free model text.

    Raises:
        JSONExtractionError: nothing parseable of the right shape was found.
    """
    text = text or ""
    found, value = _try_layers(text, expected)
    if found:
        return value

    repaired = clean_json_string(text)
    if repaired != text:
        found, value = _try_layers(repaired, expected)
        if found:
            logger.debug("JSON recovered after light repair")
            return value

    preview = text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."
    type_hint = f" Expected {expected}." if expected != "any" else ""
    raise JSONExtractionError(f"Could not extract valid JSON.{type_hint} Preview: {preview}", preview=preview)
