"""
Text normalisation helpers for fetched article markup.

Public helpers:

* html_to_text(html) -> str
    Strip all markup and collapse whitespace runs to single spaces.

* collapse_whitespace(text) -> str

* clamp_text_length(text, max_chars) -> str
"""
from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WS_RE = re.compile(r"\s+")
_TAG_RE = re.compile(r"<.*?>", flags=re.DOTALL)

# elements whose bodies are never article text
_NON_TEXT_TAGS = ("script", "style", "noscript", "template")


def collapse_whitespace(text: str | None) -> str:
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def _crude_strip(html: str) -> str:
    return _TAG_RE.sub(" ", html)


def html_to_text(html: str | None) -> str:
    """Plain text of an HTML document.

    Malformed markup never raises: if the parser gives up we fall back to a
    crude tag strip so the caller still gets whatever text is there.
    """
    if not html:
        return ""
    try:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(_NON_TEXT_TAGS):
            tag.decompose()
        text = soup.get_text(" ")
    except Exception:
        text = _crude_strip(html)
    return collapse_whitespace(text)


def clamp_text_length(text: str, max_chars: int) -> str:
    if max_chars < 0:
        raise ValueError("max_chars must be >= 0")
    return text if len(text) <= max_chars else text[:max_chars]
