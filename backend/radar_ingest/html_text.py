"""
HTML to plain text for feed and forum bodies.

script/style blocks are removed outright, line breaks and block-level
closing tags become newlines, character entities are decoded by the
parser, and runs of whitespace are collapsed.
"""

import re

from bs4 import BeautifulSoup

_BLOCK_TAGS = ["p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "blockquote", "pre"]

_INLINE_SPACE_RE = re.compile(r"[ \t\r\f\v\xa0]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")
_LINE_EDGE_RE = re.compile(r" *\n *")


def strip_html(html: str) -> str:
    """Return readable plain text for an HTML fragment."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for element in soup(["script", "style"]):
        element.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")

    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")

    text = soup.get_text()
    text = _INLINE_SPACE_RE.sub(" ", text)
    text = _LINE_EDGE_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def clamp_text(text: str, max_chars: int) -> str:
    return text if len(text) <= max_chars else text[:max_chars]
