from __future__ import annotations

import logging
import re
from html import escape

import bleach
from bs4 import BeautifulSoup, Comment

LOGGER = logging.getLogger("console_memories.sanitizer")

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
PARAGRAPH_BREAK_PATTERN = re.compile(r"\n\s*\n")

ALLOWED_TAGS: frozenset[str] = frozenset(
    {
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "p",
        "br",
        "hr",
        "ul",
        "ol",
        "li",
        "blockquote",
        "pre",
        "code",
        "strong",
        "em",
        "b",
        "i",
        "u",
        "s",
        "del",
        "a",
        "img",
        "video",
        "source",
        "table",
        "thead",
        "tbody",
        "tr",
        "th",
        "td",
        "div",
        "span",
        "figure",
        "figcaption",
    }
)

ALLOWED_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "href",
        "src",
        "alt",
        "title",
        "class",
        "target",
        "rel",
        "width",
        "height",
        "controls",
        "autoplay",
        "loop",
        "muted",
        "poster",
        "type",
        "align",
        "start",
    }
)

# http/https/mailto; bleach keeps scheme-less (relative) URIs such as /uploads/...
ALLOWED_PROTOCOLS: frozenset[str] = frozenset({"http", "https", "mailto"})

# Removed together with everything nested inside them.
DROPPED_CONTENT_TAGS: tuple[str, ...] = (
    "script",
    "style",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "svg",
    "math",
    "template",
    "noscript",
    "noembed",
    "noframes",
    "xmp",
    "title",
    "head",
    "base",
    "link",
    "meta",
    "textarea",
    "select",
)

EMBED_PLACEHOLDER_CLASS = "youtube-embed"
EMBED_ID_ATTRIBUTE = "data-video-id"


def sanitize_html(html: str) -> str:
    """
    Reduce compiled HTML to the allow-listed subset.

    Dangerous elements are dropped with their content on a parsed tree first,
    then bleach rebuilds the document from the html5lib tree keeping only
    allow-listed tags, attributes and URI schemes. Markup nested too deeply
    to walk comes back as escaped text. Never raises.
    """
    if not html:
        return ""
    try:
        pruned = _drop_dangerous_elements(html)
        return bleach.clean(
            pruned,
            tags=ALLOWED_TAGS,
            attributes=_allow_attribute,
            protocols=ALLOWED_PROTOCOLS,
            strip=True,
            strip_comments=True,
        )
    except RecursionError:
        LOGGER.warning("html too deeply nested to sanitize; escaping it length=%s", len(html))
        return escaped_paragraphs(html)


def escaped_paragraphs(text: str) -> str:
    blocks = [block.strip() for block in PARAGRAPH_BREAK_PATTERN.split(text) if block.strip()]
    return "\n".join(f"<p>{escape(block)}</p>" for block in blocks)


def _drop_dangerous_elements(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup.find_all(list(DROPPED_CONTENT_TAGS)):
        if element.decomposed:
            continue
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    return str(soup)


def _allow_attribute(tag: str, name: str, value: str) -> bool:
    lowered = name.lower()
    if lowered == EMBED_ID_ATTRIBUTE:
        return tag == "div" and VIDEO_ID_PATTERN.fullmatch(value) is not None
    return lowered in ALLOWED_ATTRIBUTES
