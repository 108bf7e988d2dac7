"""HTML to plain text conversion used by every normalizer.

The steps run in a fixed order: entities are decoded first so that encoded
markup is stripped along with real tags, script/style blocks are removed whole,
block-level closers become line breaks, remaining tags are dropped, and
whitespace is collapsed last.
"""

from __future__ import annotations

import html
import re
from typing import Optional

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BLOCK_CLOSE_RE = re.compile(r"</(p|div|br|h[1-6]|li|tr)\s*>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def decode_entities(text: str) -> str:
    """Decode named and numeric entities; non-breaking spaces become plain spaces."""
    return html.unescape(text).replace("\xa0", " ")


def strip_html(text: Optional[str]) -> str:
    """Convert an HTML fragment to readable plain text."""
    if not text:
        return ""
    out = decode_entities(text)
    out = _SCRIPT_STYLE_RE.sub("", out)
    out = _BLOCK_CLOSE_RE.sub("\n", out)
    out = _BR_RE.sub("\n", out)
    out = _TAG_RE.sub("", out)
    out = _SPACES_RE.sub(" ", out)
    out = _BLANK_LINES_RE.sub("\n\n", out)
    return out.strip()


def clamp_text(text: Optional[str], max_len: int) -> Optional[str]:
    if text is None:
        return None
    return text[:max_len]
