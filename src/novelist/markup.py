from __future__ import annotations

import re
import warnings

from bs4 import BeautifulSoup, FeatureNotFound, XMLParsedAsHTMLWarning  # type: ignore

from .logging_utils import debug_log

# Closing tags after which a paragraph break is injected.
PARAGRAPH_BREAK_TAGS = (
    "p",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "div",
    "li",
    "blockquote",
    "pre",
    "section",
    "article",
    "aside",
    "header",
    "footer",
    "nav",
    "figure",
    "figcaption",
    "table",
    "tr",
    "th",
    "td",
)

# Private-use markers survive parsing as plain text.
_PARA_MARKER = "\ue000P\ue000"
_LINE_MARKER = "\ue000L\ue000"

_CLOSING_BLOCK_PATTERN = re.compile(
    r"</(?:" + "|".join(PARAGRAPH_BREAK_TAGS) + r")\s*>\s*",
    re.IGNORECASE,
)
_BR_PATTERN = re.compile(r"<br\b[^>]*>", re.IGNORECASE)


def _insert_break_markers(html: str) -> str:
    marked = _CLOSING_BLOCK_PATTERN.sub(lambda m: f"{m.group(0)} {_PARA_MARKER} ", html)
    return _BR_PATTERN.sub(f" {_LINE_MARKER} ", marked)


def _soup_from_html(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def normalize_extracted_text(text: str) -> str:
    text = text.replace(_PARA_MARKER, "\n\n").replace(_LINE_MARKER, "\n")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_text_from_html(html: str) -> str:
    """
    Convert an (X)HTML fragment into plain text.

    Block-level elements become blank-line separated paragraphs and ``<br>``
    becomes a single newline. Parse failures yield an empty string.
    """
    try:
        soup = _soup_from_html(_insert_break_markers(html))
        for node in soup.find_all(["script", "style"]):
            node.decompose()
        body = soup.find("body")
        if body is None:
            root = soup.find(True)
            raw = root.get_text() if root is not None else soup.get_text()
        else:
            raw = body.get_text()
        return normalize_extracted_text(raw)
    except Exception as exc:
        debug_log(f"markup extraction failed: {exc}")
        return ""
