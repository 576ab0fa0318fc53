from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from console_memories.app.config import AppSettings
from console_memories.app.dependencies import (
    get_engagement_service,
    get_publishing_service,
    get_settings,
)
from console_memories.app.models.article_contracts import (
    ArticleCreateRequest,
    ArticleDetail,
    ArticleSummary,
    ArticleUpdateRequest,
    ReactionRequest,
    ReactionResponse,
    ReactionsPayload,
    VisitorReactionsResponse,
)
from console_memories.app.services.engagement_service import EngagementService
from console_memories.app.services.publishing_service import PublishingService

router = APIRouter(prefix="/api/articles", tags=["articles"])

PublishingDep = Annotated[PublishingService, Depends(get_publishing_service)]
EngagementDep = Annotated[EngagementService, Depends(get_engagement_service)]


def get_visitor_id(request: Request) -> str | None:
    visitor_id = getattr(request.state, "visitor_id", None)
    if isinstance(visitor_id, str) and visitor_id:
        return visitor_id
    return None


VisitorDep = Annotated[str | None, Depends(get_visitor_id)]


def require_admin(
    settings: Annotated[AppSettings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    expected = settings.admin_token
    if expected is None:
        raise HTTPException(status_code=403, detail="Article writes are disabled.")
    scheme, _, presented = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not presented.strip():
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(presented.strip().encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=401,
            detail="Invalid bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


AdminDep = Depends(require_admin)


@router.get("", response_model=list[ArticleSummary], operation_id="list_articles")
def list_articles(publishing: PublishingDep) -> list[ArticleSummary]:
    return [ArticleSummary.from_published(article) for article in publishing.list_articles()]


@router.get(
    "/reactions/{article_id}/me",
    response_model=VisitorReactionsResponse,
    operation_id="get_visitor_reactions",
)
def get_visitor_reactions(
    article_id: str,
    engagement: EngagementDep,
    visitor_id: VisitorDep,
) -> VisitorReactionsResponse:
    return VisitorReactionsResponse(
        reacted=engagement.visitor_reactions(article_id, visitor_id),
    )


@router.get("/{slug}", response_model=ArticleDetail, operation_id="get_article")
def get_article(
    slug: str,
    publishing: PublishingDep,
    engagement: EngagementDep,
    visitor_id: VisitorDep,
) -> ArticleDetail:
    published = publishing.get_article_by_slug(slug)
    if visitor_id is None:
        return ArticleDetail.from_published(published)

    article_id = published.article.article_id
    context_tokens = bind_contextvars(article_id=article_id)
    try:
        engagement.record_view(article_id, visitor_id)
        detail = ArticleDetail.from_published(published)
        return detail.model_copy(update={"views": engagement.view_count(article_id)})
    finally:
        reset_contextvars(**context_tokens)


@router.post(
    "",
    response_model=ArticleDetail,
    status_code=201,
    dependencies=[AdminDep],
    operation_id="create_article",
)
def create_article(request: ArticleCreateRequest, publishing: PublishingDep) -> ArticleDetail:
    published = publishing.create_article(
        title=request.title,
        content=request.content,
        featured=request.featured,
    )
    return ArticleDetail.from_published(published)


@router.put(
    "/{article_id}",
    response_model=ArticleDetail,
    dependencies=[AdminDep],
    operation_id="update_article",
)
def update_article(
    article_id: str,
    request: ArticleUpdateRequest,
    publishing: PublishingDep,
) -> ArticleDetail:
    published = publishing.update_article(
        article_id,
        title=request.title,
        content=request.content,
        featured=request.featured,
    )
    return ArticleDetail.from_published(published)


@router.delete(
    "/{article_id}",
    status_code=204,
    dependencies=[AdminDep],
    operation_id="delete_article",
)
def delete_article(article_id: str, publishing: PublishingDep) -> Response:
    publishing.delete_article(article_id)
    return Response(status_code=204)


@router.post(
    "/{article_id}/reactions",
    response_model=ReactionResponse,
    operation_id="react_to_article",
)
def react_to_article(
    article_id: str,
    request: ReactionRequest,
    engagement: EngagementDep,
    visitor_id: VisitorDep,
) -> ReactionResponse:
    context_tokens = bind_contextvars(article_id=article_id)
    try:
        outcome = engagement.react_to(article_id, request.type, visitor_id)
    finally:
        reset_contextvars(**context_tokens)
    return ReactionResponse(
        reactions=ReactionsPayload.from_counts(outcome.reactions),
        already_counted=outcome.already_counted,
    )
