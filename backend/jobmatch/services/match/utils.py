# jobmatch/services/match/utils.py
"""
Match Utilities - text helpers used to prepare jobs for the model.
"""
import html
import re
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

_REQUIREMENT_LINE_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+(.+?)\s*$")

_BLOCK_CLOSE_RE = re.compile(r"</(p|div|h[1-6]|li|br|tr)>", re.IGNORECASE)
_BLOCK_OPEN_RE = re.compile(r"<(p|div|h[1-6]|tr)(\s[^>]*)?>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_LI_OPEN_RE = re.compile(r"<li(\s[^>]*)?>", re.IGNORECASE)
_ANY_TAG_RE = re.compile(r"<[^>]+>")


def extract_requirements(description: Optional[str]) -> List[str]:
    """
    Pull bullet (-, *, •) and numbered (1. / 1)) lines out of a description.
    Case-insensitive de-duplication, first occurrence wins.
    """
    if not description:
        return []

    seen = set()
    requirements: List[str] = []
    for line in description.splitlines():
        match = _REQUIREMENT_LINE_RE.match(line.strip())
        if not match:
            continue
        item = match.group(1).strip()
        key = item.lower()
        if not item or key in seen:
            continue
        seen.add(key)
        requirements.append(item)
    return requirements


def html_to_text(raw: Optional[str]) -> str:
    """Lightweight HTML -> readable text: block tags become line breaks, list items become bullets."""
    if not raw:
        return ""
    text = _BLOCK_CLOSE_RE.sub("\n\n", raw)
    text = _BLOCK_OPEN_RE.sub("", text)
    text = _BR_RE.sub("\n", text)
    text = _LI_OPEN_RE.sub("• ", text)
    text = _ANY_TAG_RE.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def chunk_list(items: Sequence[T], size: int) -> List[List[T]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
