"""
Text helpers for turning raw message parts into display metadata.
"""

from __future__ import annotations
import email.header
import html
import re
from typing import Optional

from bs4 import BeautifulSoup

DEFAULT_PREVIEW_CHARS = 150


def decode_header_value(value: Optional[str]) -> str:
    """Decode an RFC 2047 encoded header into a plain string."""
    if not value:
        return ""
    fragments = []
    for fragment, encoding in email.header.decode_header(value):
        if isinstance(fragment, bytes):
            try:
                fragments.append(fragment.decode(encoding or "utf-8", errors="replace"))
            except LookupError:
                # unknown charset label
                fragments.append(fragment.decode("utf-8", errors="replace"))
        else:
            fragments.append(fragment)
    return "".join(fragments).strip()


def normalize_whitespace(text: str) -> str:
    """
    Minimal whitespace normalization on plain text.

    - Unescapes HTML entities (&nbsp;, etc.)
    - Removes zero-width characters
    - Converts wrapped <https://...> links into plain URLs
    - Reduces multiple blank lines to a maximum of two
    - Collapses redundant spaces within lines while preserving line breaks
    """
    text = html.unescape(text or "")
    text = re.sub(r"[\u200B-\u200D\uFEFF]", "", text)
    text = re.sub(r"<(https?://[^>\s]+)>", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = "\n".join(" ".join(line.split()) for line in text.splitlines())
    return text.strip()


def html_to_text(html_str: str) -> str:
    """
    Convert an HTML body into readable plain text.

    Scripts, styles and quoted blocks (.gmail_quote, <blockquote>) are
    dropped; <br> and <p> become line breaks.
    """
    soup = BeautifulSoup(html_str or "", "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for quote in soup.select(".gmail_quote, blockquote"):
        quote.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for p in soup.find_all("p"):
        if p.text and not p.text.endswith("\n"):
            p.append("\n")
    return normalize_whitespace(soup.get_text(separator="", strip=False))


def make_preview(text: str, max_chars: int = DEFAULT_PREVIEW_CHARS) -> str:
    """
    First ``max_chars`` characters of a body on a single line.

    Quoted reply lines (starting with '>') are skipped.
    """
    lines = [ln for ln in (text or "").splitlines() if not ln.lstrip().startswith(">")]
    flat = " ".join(" ".join(lines).split())
    return flat[:max_chars]
