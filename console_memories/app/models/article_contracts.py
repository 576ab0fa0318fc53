from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from console_memories.app.models.reactions import ReactionCounts, ReactionKind
from console_memories.app.services.publishing_service import PublishedArticle


class ReactionsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fire: int = 0
    heart: int = 0
    thinking: int = 0
    clap: int = 0

    @classmethod
    def from_counts(cls, counts: ReactionCounts) -> ReactionsPayload:
        return cls(**counts.as_dict())


class ArticleSummary(BaseModel):
    """List entry; omits the body and compiled html."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    slug: str
    excerpt: str
    featured: bool
    created_at: datetime
    updated_at: datetime
    reactions: ReactionsPayload
    views: int

    @classmethod
    def from_published(cls, published: PublishedArticle) -> ArticleSummary:
        article = published.article
        return cls(
            id=article.article_id,
            title=article.title,
            slug=article.slug,
            excerpt=article.excerpt,
            featured=article.featured,
            created_at=article.created_at,
            updated_at=article.updated_at,
            reactions=ReactionsPayload.from_counts(published.reactions),
            views=published.views,
        )


class ArticleDetail(ArticleSummary):
    content: str
    content_html: str

    @classmethod
    def from_published(cls, published: PublishedArticle) -> ArticleDetail:
        summary = ArticleSummary.from_published(published)
        return cls(
            **summary.model_dump(),
            content=published.article.content,
            content_html=published.article.content_html,
        )


# Title and content are checked by PublishingService, not here.
class ArticleCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Any = None
    content: Any = None
    featured: bool = False


class ArticleUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Any = None
    content: Any = None
    featured: bool | None = None


class ReactionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(max_length=32)


class ReactionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reactions: ReactionsPayload
    already_counted: bool


class VisitorReactionsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reacted: list[ReactionKind]


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    field: str | None = None
