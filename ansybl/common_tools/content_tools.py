"""
Content helpers for building items: markdown rendering, HTML sanitizing,
plain-text extraction and summary generation.
"""

import logging
import re
from typing import Any, Mapping, Optional

import markdown
import nh3
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 200

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "sane_lists"]

ALLOWED_TAGS = {
    "a", "abbr", "b", "blockquote", "br", "code", "del", "em", "figcaption",
    "figure", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img", "li",
    "ol", "p", "pre", "s", "span", "strong", "sub", "sup", "table", "tbody",
    "td", "th", "thead", "tr", "u", "ul",
}

ALLOWED_ATTRIBUTES = {
    "a": {"href", "title"},
    "abbr": {"title"},
    "img": {"src", "alt", "title", "width", "height"},
    "td": {"colspan", "rowspan"},
    "th": {"colspan", "rowspan"},
}

ALLOWED_URL_SCHEMES = {"http", "https", "mailto"}

BLOCK_TAGS = [
    "p", "div", "li", "ul", "ol", "blockquote", "pre", "table", "tr",
    "h1", "h2", "h3", "h4", "h5", "h6", "figure", "figcaption", "hr",
]

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?](?=\s)")


def markdown_to_html(text: str) -> str:
    """Render markdown to (unsanitized) HTML."""
    return markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS)


def sanitize_html(html: str) -> str:
    """Strip scripts, event handlers and anything outside the allow-list."""
    return nh3.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        url_schemes=ALLOWED_URL_SCHEMES,
        link_rel="noopener noreferrer",
    )


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def html_to_text(html: str) -> str:
    """Extract readable text, keeping block elements apart."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for element in soup.find_all(BLOCK_TAGS):
        element.append("\n")

    return collapse_whitespace(soup.get_text())


def generate_summary(text: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """
    Shorten text to at most max_length characters.

    Prefers ending at the last sentence boundary when it lies beyond half of
    max_length; otherwise cuts at the last word boundary and appends "...",
    and as a last resort cuts mid-word.
    """
    text = collapse_whitespace(text or "")
    if len(text) <= max_length:
        return text

    sentence_ends = [
        match.end() for match in _SENTENCE_END.finditer(text[:max_length + 1])
        if match.end() <= max_length
    ]
    if sentence_ends and sentence_ends[-1] > max_length * 0.5:
        return text[:sentence_ends[-1]]

    window = text[:max_length - 3]
    last_space = window.rfind(" ")
    if last_space > 0:
        return window[:last_space].rstrip() + "..."

    return window + "..."


def render_item_content(
    content_text: Optional[str] = None,
    content_html: Optional[str] = None,
    content_markdown: Optional[str] = None,
) -> dict:
    """
    Resolve the content fields of a new item.

    Markdown is rendered only when no HTML was supplied. Whatever HTML ends
    up in the item is sanitized exactly once, and missing text is derived
    from that sanitized HTML.
    """
    html = content_html
    if html is None and content_markdown:
        html = markdown_to_html(content_markdown)

    if html is not None:
        html = sanitize_html(html)

    text = content_text
    if text is None and html:
        text = html_to_text(html) or None

    return {
        "content_text": text,
        "content_html": html,
        "content_markdown": content_markdown,
    }


def content_type_of(item: Mapping[str, Any]) -> Optional[str]:
    """Classify an item as text, html, markdown or mixed by its content fields."""
    present = [
        kind for kind, field in (("text", "content_text"), ("html", "content_html"), ("markdown", "content_markdown"))
        if item.get(field)
    ]
    if not present:
        return None
    return present[0] if len(present) == 1 else "mixed"
