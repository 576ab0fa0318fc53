from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from console_memories.app.dependencies import reset_cached_dependencies
from console_memories.app.main import create_app
from console_memories.app.repositories.article_repository import ArticleRepository
from console_memories.app.repositories.database import Database
from console_memories.app.repositories.engagement_repository import EngagementRepository
from console_memories.app.services.engagement_service import EngagementService
from console_memories.app.services.publishing_service import PublishingService

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def database() -> Iterator[Database]:
    db = Database.in_memory()
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def file_database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def publishing(database: Database) -> PublishingService:
    return PublishingService(
        article_repository=ArticleRepository(database),
        engagement_repository=EngagementRepository(database),
    )


@pytest.fixture
def engagement(database: Database) -> EngagementService:
    return EngagementService(engagement_repository=EngagementRepository(database))


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("CONSOLE_MEMORIES_DATA_DIR", str(data_dir))
    monkeypatch.setenv("CONSOLE_MEMORIES_ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
