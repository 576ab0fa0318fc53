from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from console_memories.app.errors import NotFoundError, StorageError
from console_memories.app.models.reactions import ReactionCounts
from console_memories.app.repositories.article_repository import (
    ArticleChanges,
    ArticleRecord,
    ArticleRepository,
    SlugConflictError,
)
from console_memories.app.repositories.engagement_repository import EngagementRepository
from console_memories.app.services.content_text import (
    clean_text_input,
    extract_excerpt,
    slug_candidate,
    slugify_title,
)
from console_memories.app.services.markdown_pipeline import (
    compile_markdown,
    materialize_embeds,
    needs_materialization,
)
from console_memories.app.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("console_memories.publishing")


@dataclass(frozen=True)
class PublishedArticle:
    article: ArticleRecord
    reactions: ReactionCounts
    views: int


class PublishingService:
    def __init__(
        self,
        *,
        article_repository: ArticleRepository,
        engagement_repository: EngagementRepository,
        telemetry: TelemetryClient | None = None,
        max_title_length: int = 200,
        max_content_length: int = 100_000,
        slug_max_length: int = 100,
        slug_max_attempts: int = 50,
    ) -> None:
        self._article_repository = article_repository
        self._engagement_repository = engagement_repository
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._max_title_length = max_title_length
        self._max_content_length = max_content_length
        self._slug_max_length = slug_max_length
        self._slug_max_attempts = max(1, slug_max_attempts)

    def slugify(self, title: str, exclude_id: str | None = None) -> str:
        """
        First free slug for `title`, ignoring the article `exclude_id`.

        Advisory only: the UNIQUE constraint on write is what guarantees
        uniqueness, see `_write_with_unique_slug`.
        """
        base = slugify_title(title, max_length=self._slug_max_length)
        for attempt in range(self._slug_max_attempts):
            candidate = slug_candidate(base, attempt)
            if not self._article_repository.slug_exists(candidate, exclude_id=exclude_id):
                return candidate
        raise StorageError(f"No free slug for {base!r} after {self._slug_max_attempts} attempts")

    def create_article(
        self,
        *,
        title: object,
        content: object,
        featured: bool = False,
    ) -> PublishedArticle:
        clean_title = clean_text_input(title, field="title", max_length=self._max_title_length)
        clean_content = clean_text_input(
            content, field="content", max_length=self._max_content_length
        )
        content_html = compile_markdown(clean_content)
        excerpt = extract_excerpt(clean_content)

        article = self._write_with_unique_slug(
            clean_title,
            exclude_id=None,
            write=lambda slug: self._article_repository.create_article(
                title=clean_title,
                slug=slug,
                content=clean_content,
                content_html=content_html,
                excerpt=excerpt,
                featured=featured,
            ),
        )
        if article is None:
            raise StorageError("Article was not stored")
        LOGGER.info(
            "article published article_id=%s slug=%s featured=%s",
            article.article_id,
            article.slug,
            article.featured,
        )
        self._telemetry.emit(
            TelemetryEvent.ARTICLE_PUBLISHED,
            article_id=article.article_id,
            slug=article.slug,
            featured=article.featured,
        )
        return PublishedArticle(article=article, reactions=ReactionCounts(), views=0)

    def update_article(
        self,
        article_id: str,
        *,
        title: object | None = None,
        content: object | None = None,
        featured: bool | None = None,
    ) -> PublishedArticle:
        existing = self._article_repository.get_article(article_id)
        if existing is None:
            raise NotFoundError("article", article_id)

        changes = ArticleChanges(featured=featured)
        if content is not None:
            clean_content = clean_text_input(
                content, field="content", max_length=self._max_content_length
            )
            changes = replace(
                changes,
                content=clean_content,
                content_html=compile_markdown(clean_content),
                excerpt=extract_excerpt(clean_content),
            )

        clean_title = (
            None
            if title is None
            else clean_text_input(title, field="title", max_length=self._max_title_length)
        )
        title_changed = clean_title is not None and clean_title != existing.title
        if clean_title is None or not title_changed:
            updated = self._article_repository.update_article(article_id, changes)
        else:
            updated = self._write_with_unique_slug(
                clean_title,
                exclude_id=article_id,
                write=lambda slug: self._article_repository.update_article(
                    article_id,
                    replace(changes, title=clean_title, slug=slug),
                ),
            )

        if updated is None:
            raise NotFoundError("article", article_id)

        LOGGER.info(
            "article updated article_id=%s slug=%s content_changed=%s title_changed=%s",
            article_id,
            updated.slug,
            content is not None,
            title_changed,
        )
        self._telemetry.emit(
            TelemetryEvent.ARTICLE_UPDATED, article_id=article_id, slug=updated.slug
        )
        return self._with_engagement(updated)

    def delete_article(self, article_id: str) -> None:
        if not self._article_repository.delete_article(article_id):
            raise NotFoundError("article", article_id)
        LOGGER.info("article deleted article_id=%s", article_id)
        self._telemetry.emit(TelemetryEvent.ARTICLE_DELETED, article_id=article_id)

    def get_article(self, article_id: str) -> PublishedArticle:
        article = self._article_repository.get_article(article_id)
        if article is None:
            raise NotFoundError("article", article_id)
        return self._with_engagement(_upgrade_legacy_html(article))

    def get_article_by_slug(self, slug: str) -> PublishedArticle:
        article = self._article_repository.get_article_by_slug(slug)
        if article is None:
            raise NotFoundError("article", slug)
        return self._with_engagement(_upgrade_legacy_html(article))

    def list_articles(self) -> list[PublishedArticle]:
        articles = self._article_repository.list_articles()
        article_ids = [article.article_id for article in articles]
        reactions = self._engagement_repository.get_reactions_for_articles(article_ids)
        views = self._engagement_repository.get_view_counts(article_ids)
        return [
            PublishedArticle(
                article=article,
                reactions=reactions.get(article.article_id, ReactionCounts()),
                views=views.get(article.article_id, 0),
            )
            for article in articles
        ]

    def _with_engagement(self, article: ArticleRecord) -> PublishedArticle:
        return PublishedArticle(
            article=article,
            reactions=self._engagement_repository.get_reactions(article.article_id),
            views=self._engagement_repository.get_view_count(article.article_id),
        )

    def _write_with_unique_slug(
        self,
        title: str,
        *,
        exclude_id: str | None,
        write: Callable[[str], ArticleRecord | None],
    ) -> ArticleRecord | None:
        base = slugify_title(title, max_length=self._slug_max_length)
        attempt = 0
        while attempt < self._slug_max_attempts:
            candidate = slug_candidate(base, attempt)
            attempt += 1
            if self._article_repository.slug_exists(candidate, exclude_id=exclude_id):
                continue
            try:
                return write(candidate)
            except SlugConflictError:
                LOGGER.warning(
                    "slug taken concurrently; retrying slug=%s attempt=%s",
                    candidate,
                    attempt,
                )
        raise StorageError(f"No free slug for {base!r} after {self._slug_max_attempts} attempts")


def _upgrade_legacy_html(article: ArticleRecord) -> ArticleRecord:
    if not needs_materialization(article.content_html):
        return article
    return replace(article, content_html=materialize_embeds(article.content_html))
