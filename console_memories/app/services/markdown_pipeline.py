from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Tag
from markdown_it import MarkdownIt
from markdown_it.token import Token

from console_memories.app.services.html_sanitizer import (
    EMBED_ID_ATTRIBUTE,
    EMBED_PLACEHOLDER_CLASS,
    VIDEO_ID_PATTERN,
    escaped_paragraphs,
    sanitize_html,
)

LOGGER = logging.getLogger("console_memories.markdown")

# A whole line that is nothing but a YouTube URL. Markdown link syntax never
# matches because the line has to start with the URL itself.
VIDEO_URL_LINE_PATTERN = re.compile(
    r"^(?:https?://)?(?:(?:www|m)\.)?"
    r"(?:youtube\.com/(?:watch\?v=|embed/|shorts/|live/)|youtu\.be/)"
    r"(?P<video_id>[A-Za-z0-9_-]{11})"
    r"(?:[&?][A-Za-z0-9_=&%.+-]*)?$"
)
FENCE_PATTERN = re.compile(r"^ {0,3}(?P<fence>`{3,}|~{3,})")

EMBED_HOST = "https://www.youtube-nocookie.com/embed/"
EMBED_SANDBOX = "allow-scripts allow-same-origin allow-presentation"
EMBED_WRAPPER_CLASS = "youtube-embed__wrapper"

# Blockquotes and lists deeper than this are cut off by the parser.
MAX_NESTING = 20
TABLE_ALIGN_PREFIX = "text-align:"

_MARKDOWN = MarkdownIt(
    "commonmark",
    {"html": True, "breaks": True, "maxNesting": MAX_NESTING},
).enable(["table", "strikethrough"])


def compile_markdown(source: str) -> str:
    """Markdown to stored HTML: embed placeholders, compile, sanitize, materialize."""
    with_placeholders = embed_video_placeholders(source)
    raw_html = render_markdown(with_placeholders)
    clean_html = sanitize_html(raw_html)
    return materialize_embeds(clean_html)


def embed_video_placeholders(source: str) -> str:
    output: list[str] = []
    open_fence: str | None = None

    for line in source.splitlines():
        fence_match = FENCE_PATTERN.match(line)
        if fence_match is not None:
            fence = fence_match.group("fence")
            if open_fence is None:
                open_fence = fence
            elif fence[0] == open_fence[0] and len(fence) >= len(open_fence):
                open_fence = None
            output.append(line)
            continue

        if open_fence is not None or _is_indented_code(line):
            output.append(line)
            continue

        video_id = extract_video_id(line)
        if video_id is None:
            output.append(line)
            continue

        output.extend(["", build_placeholder(video_id), ""])

    return "\n".join(output)


def extract_video_id(line: str) -> str | None:
    match = VIDEO_URL_LINE_PATTERN.fullmatch(line.strip())
    if match is None:
        return None
    video_id = match.group("video_id")
    if VIDEO_ID_PATTERN.fullmatch(video_id) is None:
        return None
    return video_id


def build_placeholder(video_id: str) -> str:
    return (
        f'<div class="{EMBED_PLACEHOLDER_CLASS}" {EMBED_ID_ATTRIBUTE}="{video_id}"></div>'
    )


def render_markdown(source: str) -> str:
    env: dict[str, object] = {}
    try:
        tokens = _MARKDOWN.parse(source, env)
        return _MARKDOWN.renderer.render(_align_table_cells(tokens), _MARKDOWN.options, env)
    except RecursionError:
        LOGGER.warning("markdown render failed; falling back to escaped text", exc_info=True)
        return escaped_paragraphs(source)


def materialize_embeds(html: str) -> str:
    """Swap sanitized placeholders for sandboxed privacy-mode iframes. Idempotent."""
    if not html:
        return ""
    try:
        soup = BeautifulSoup(html, "html.parser")
        for placeholder in soup.find_all("div", class_=EMBED_PLACEHOLDER_CLASS):
            if not isinstance(placeholder, Tag):
                continue
            video_id = placeholder.get(EMBED_ID_ATTRIBUTE)
            if not isinstance(video_id, str) or VIDEO_ID_PATTERN.fullmatch(video_id) is None:
                continue
            placeholder.replace_with(_build_embed(soup, video_id))
        return str(soup)
    except RecursionError:
        # Input is already sanitized; it is served without embeds.
        LOGGER.warning("html too deeply nested to materialize embeds length=%s", len(html))
        return html


def needs_materialization(html: str) -> bool:
    return f'{EMBED_ID_ATTRIBUTE}="' in html and "<iframe" not in html


def _build_embed(soup: BeautifulSoup, video_id: str) -> Tag:
    container = soup.new_tag("div", attrs={"class": EMBED_PLACEHOLDER_CLASS})
    wrapper = soup.new_tag("div", attrs={"class": EMBED_WRAPPER_CLASS})
    iframe = soup.new_tag(
        "iframe",
        attrs={
            "src": f"{EMBED_HOST}{video_id}",
            "title": "YouTube video",
            "allowfullscreen": "",
            "sandbox": EMBED_SANDBOX,
            "loading": "lazy",
            "referrerpolicy": "strict-origin-when-cross-origin",
        },
    )
    wrapper.append(iframe)
    container.append(wrapper)
    return container


def _align_table_cells(tokens: list[Token]) -> list[Token]:
    # Alignment arrives as an inline style; the sanitizer keeps only `align`.
    for token in tokens:
        if token.type not in ("th_open", "td_open"):
            continue
        style = token.attrs.pop("style", None)
        if isinstance(style, str) and style.startswith(TABLE_ALIGN_PREFIX):
            token.attrSet("align", style.removeprefix(TABLE_ALIGN_PREFIX))
    return tokens


def _is_indented_code(line: str) -> bool:
    return line.startswith(("    ", "\t"))

