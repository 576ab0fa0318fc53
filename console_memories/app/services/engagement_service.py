from __future__ import annotations

import logging

from console_memories.app.errors import NotFoundError, ValidationError
from console_memories.app.models.reactions import (
    ReactionKind,
    ReactionOutcome,
    parse_reaction_kind,
)
from console_memories.app.repositories.engagement_repository import EngagementRepository
from console_memories.app.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("console_memories.engagement")

MAX_VISITOR_ID_LENGTH = 128


class EngagementService:
    """
    Reactions and views, deduplicated per visitor.

    Anonymous callers (no visitor id) are always counted and never logged, so
    repeated anonymous actions overcount.
    """

    def __init__(
        self,
        *,
        engagement_repository: EngagementRepository,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._engagement_repository = engagement_repository
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def react_to(
        self,
        article_id: str,
        kind: ReactionKind | str,
        visitor_id: str | None = None,
    ) -> ReactionOutcome:
        reaction_kind = parse_reaction_kind(kind)
        normalized_visitor = _normalize_visitor_id(visitor_id)

        result = self._engagement_repository.record_reaction(
            article_id=article_id,
            kind=reaction_kind,
            visitor_id=normalized_visitor,
        )
        if result is None:
            raise NotFoundError("article", article_id)

        if result.recorded:
            self._telemetry.emit(
                TelemetryEvent.REACTION_RECORDED,
                article_id=article_id,
                kind=reaction_kind.value,
                anonymous=normalized_visitor is None,
            )
        else:
            LOGGER.debug(
                "reaction already counted article_id=%s kind=%s",
                article_id,
                reaction_kind.value,
            )
        return ReactionOutcome(reactions=result.reactions, already_counted=not result.recorded)

    def record_view(self, article_id: str, visitor_id: str) -> None:
        normalized_visitor = _normalize_visitor_id(visitor_id)
        if normalized_visitor is None:
            raise ValidationError("visitor_id", "must not be empty")

        result = self._engagement_repository.record_view(
            article_id=article_id,
            visitor_id=normalized_visitor,
        )
        if result is None:
            raise NotFoundError("article", article_id)
        if result.recorded:
            self._telemetry.emit(
                TelemetryEvent.VIEW_RECORDED, article_id=article_id, views=result.view_count
            )

    def view_count(self, article_id: str) -> int:
        return self._engagement_repository.get_view_count(article_id)

    def visitor_reactions(self, article_id: str, visitor_id: str | None) -> list[ReactionKind]:
        normalized_visitor = _normalize_visitor_id(visitor_id)
        if normalized_visitor is None:
            return []
        return self._engagement_repository.list_visitor_reactions(
            article_id=article_id,
            visitor_id=normalized_visitor,
        )


def _normalize_visitor_id(visitor_id: str | None) -> str | None:
    if visitor_id is None:
        return None
    normalized = visitor_id.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_VISITOR_ID_LENGTH:
        raise ValidationError("visitor_id", f"must be at most {MAX_VISITOR_ID_LENGTH} characters")
    return normalized
