from __future__ import annotations

from functools import lru_cache

from console_memories.app.config import AppSettings, load_settings
from console_memories.app.repositories.article_repository import ArticleRepository
from console_memories.app.repositories.database import Database
from console_memories.app.repositories.engagement_repository import EngagementRepository
from console_memories.app.services.engagement_service import EngagementService
from console_memories.app.services.publishing_service import PublishingService
from console_memories.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    settings = get_settings()
    database = Database(
        settings.db_path,
        busy_timeout_seconds=settings.db_busy_timeout_seconds,
    )
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_publishing_service() -> PublishingService:
    settings = get_settings()
    database = get_database()
    return PublishingService(
        article_repository=ArticleRepository(database),
        engagement_repository=EngagementRepository(database),
        telemetry=get_telemetry(),
        max_title_length=settings.max_title_length,
        max_content_length=settings.max_content_length,
        slug_max_length=settings.slug_max_length,
        slug_max_attempts=settings.slug_max_attempts,
    )


@lru_cache(maxsize=1)
def get_engagement_service() -> EngagementService:
    return EngagementService(
        engagement_repository=EngagementRepository(get_database()),
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_engagement_service.cache_clear()
    get_publishing_service.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
