from __future__ import annotations

import re
import unicodedata

import bleach
import markdown

SLUG_MAX_LENGTH = 255
DEFAULT_SLUG = "question"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

MARKDOWN_EXTENSIONS = ("fenced_code", "tables", "nl2br", "sane_lists")

ALLOWED_TAGS = frozenset(
    {
        "a", "abbr", "b", "blockquote", "br", "code", "del", "em", "h1", "h2", "h3", "h4",
        "h5", "h6", "hr", "i", "img", "li", "ol", "p", "pre", "strong", "sub", "sup",
        "table", "tbody", "td", "th", "thead", "tr", "ul",
    }
)
ALLOWED_ATTRIBUTES = {
    "a": ["href", "title", "rel"],
    "abbr": ["title"],
    "code": ["class"],
    "img": ["src", "alt", "title"],
    "td": ["align"],
    "th": ["align"],
}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})


def slugify(title: str) -> str:
    """
    URL-safe slug from a title.

    Examples:
        "Why is the sky blue?" -> "why-is-the-sky-blue"
        "Café  crème" -> "cafe-creme"
    """
    normalized = unicodedata.normalize("NFKD", title or "")
    ascii_only = normalized.encode("ascii", "ignore").decode("ascii").lower()
    slug = _NON_ALNUM_RE.sub("-", ascii_only).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    return slug or DEFAULT_SLUG


def render_markdown(raw: str | None) -> str:
    """Markdown -> sanitized HTML. Never stored; called at render time."""
    if not raw:
        return ""
    html = markdown.markdown(raw, extensions=list(MARKDOWN_EXTENSIONS), output_format="html")
    return bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )
