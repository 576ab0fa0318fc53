from __future__ import annotations

import re

from console_memories.app.errors import ValidationError

EXCERPT_MAX_CHARS = 150
EXCERPT_ELLIPSIS = "..."
DEFAULT_SLUG = "article"

CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

FENCED_CODE_PATTERN = re.compile(
    r"^ {0,3}(`{3,}|~{3,})[^\n]*\n.*?(?:^ {0,3}\1[ \t]*$|\Z)",
    re.DOTALL | re.MULTILINE,
)
INLINE_CODE_PATTERN = re.compile(r"(`+)(?:(?!\1).)*?\1", re.DOTALL)
# Bounded so unbalanced brackets cannot make a scan run to the end of the text.
IMAGE_PATTERN = re.compile(r"!\[[^\]\[\n]{0,500}\]\([^)\n]{0,2000}\)")
LINK_PATTERN = re.compile(r"\[([^\]\[\n]{1,500})\]\([^)\n]{0,2000}\)")
HEADING_PATTERN = re.compile(r"^[ \t]{0,3}#{1,6}(?:[ \t]+|$)", re.MULTILINE)
STRONG_PATTERN = re.compile(r"\*\*|__|~~")
EMPHASIS_PATTERN = re.compile(r"\*|(?<!\w)_|_(?!\w)")
WHITESPACE_PATTERN = re.compile(r"\s+")
TRAILING_PARTIAL_WORD_PATTERN = re.compile(r"\s+\S*$")

SLUG_DISALLOWED_PATTERN = re.compile(r"[^a-z0-9\s-]")
SLUG_WHITESPACE_PATTERN = re.compile(r"\s+")
SLUG_HYPHENS_PATTERN = re.compile(r"-+")


def extract_excerpt(source: str, *, max_chars: int = EXCERPT_MAX_CHARS) -> str:
    text = FENCED_CODE_PATTERN.sub(" ", source)
    text = INLINE_CODE_PATTERN.sub("", text)
    text = IMAGE_PATTERN.sub("", text)
    text = LINK_PATTERN.sub(r"\1", text)
    text = HEADING_PATTERN.sub("", text)
    text = STRONG_PATTERN.sub("", text)
    text = EMPHASIS_PATTERN.sub("", text)
    text = WHITESPACE_PATTERN.sub(" ", text).strip()

    if len(text) <= max_chars:
        return text
    truncated = TRAILING_PARTIAL_WORD_PATTERN.sub("", text[:max_chars])
    return f"{truncated}{EXCERPT_ELLIPSIS}"


def slugify_title(title: str, *, max_length: int = 100) -> str:
    slug = SLUG_DISALLOWED_PATTERN.sub("", title.lower())
    slug = SLUG_WHITESPACE_PATTERN.sub("-", slug)
    slug = SLUG_HYPHENS_PATTERN.sub("-", slug).strip("-")
    if max_length > 0:
        slug = slug[:max_length].rstrip("-")
    return slug or DEFAULT_SLUG


def slug_candidate(base: str, attempt: int) -> str:
    if attempt == 0:
        return base
    return f"{base}-{attempt}"


def clean_text_input(value: object, *, field: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    cleaned = CONTROL_CHARS_PATTERN.sub("", value).strip()
    if not cleaned:
        raise ValidationError(field, "must not be empty")
    if len(cleaned) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return cleaned
