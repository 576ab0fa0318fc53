from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from console_memories.app.dependencies import reset_cached_dependencies
from console_memories.app.main import create_app
from console_memories.app.repositories import database as database_module

VIDEO_ID = "dQw4w9WgXcQ"


def _create(
    client: TestClient,
    admin_headers: dict[str, str],
    **body: Any,
) -> dict[str, Any]:
    payload = {"title": "Test Article", "content": "# Test\n\nThis is a test."}
    payload.update(body)
    response = client.post("/api/articles", json=payload, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_first_request_mints_visitor_cookie(client: TestClient) -> None:
    response = client.get("/api/articles")

    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith("cm_visitor=")
    assert "HttpOnly" in set_cookie
    assert "samesite=lax" in set_cookie.lower()
    assert "Max-Age=31536000" in set_cookie

    repeat = client.get("/api/articles")
    assert "set-cookie" not in repeat.headers


def test_malformed_visitor_cookie_is_replaced(client: TestClient) -> None:
    client.cookies.set("cm_visitor", "not-a-uuid")

    response = client.get("/api/articles")

    assert "cm_visitor=" in response.headers["set-cookie"]
    assert "not-a-uuid" not in response.headers["set-cookie"]


def test_create_article_returns_compiled_article(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    data = _create(client, admin_headers, title="Test Article Create")

    assert data["title"] == "Test Article Create"
    assert data["slug"] == "test-article-create"
    assert "<h1>Test</h1>" in data["content_html"]
    assert data["id"].startswith("article_")
    assert data["reactions"] == {"fire": 0, "heart": 0, "thinking": 0, "clap": 0}
    assert data["views"] == 0


def test_writes_require_bearer_token(client: TestClient) -> None:
    body = {"title": "Nope", "content": "body"}

    missing = client.post("/api/articles", json=body)
    wrong = client.post("/api/articles", json=body, headers={"Authorization": "Bearer wrong"})
    basic = client.post("/api/articles", json=body, headers={"Authorization": "Basic abc"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert basic.status_code == 401
    assert client.get("/api/articles").json() == []


def test_writes_are_refused_without_configured_token(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_DATA_DIR", str(tmp_path / "no-admin"))
    monkeypatch.delenv("CONSOLE_MEMORIES_ADMIN_TOKEN", raising=False)
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_SINK", "none")
    reset_cached_dependencies()
    try:
        with TestClient(create_app()) as no_admin_client:
            response = no_admin_client.post(
                "/api/articles",
                json={"title": "x", "content": "y"},
                headers={"Authorization": "Bearer anything"},
            )
    finally:
        reset_cached_dependencies()

    assert response.status_code == 403


def test_create_article_validation_errors_name_the_field(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    empty_title = client.post(
        "/api/articles",
        json={"title": "   ", "content": "body"},
        headers=admin_headers,
    )
    missing_content = client.post(
        "/api/articles",
        json={"title": "Title"},
        headers=admin_headers,
    )
    huge_content = client.post(
        "/api/articles",
        json={"title": "Title", "content": "x" * 100_001},
        headers=admin_headers,
    )
    unknown_field = client.post(
        "/api/articles",
        json={"title": "Title", "content": "body", "author": "me"},
        headers=admin_headers,
    )

    assert empty_title.status_code == 400
    assert empty_title.json()["field"] == "title"
    assert missing_content.status_code == 400
    assert missing_content.json()["field"] == "content"
    assert huge_content.status_code == 400
    assert huge_content.json()["field"] == "content"
    assert unknown_field.status_code == 400
    assert unknown_field.json()["field"] == "author"


def test_list_articles_omits_full_content_and_orders_featured_first(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    _create(client, admin_headers, title="Non Featured", featured=False)
    _create(client, admin_headers, title="Featured Article", featured=True)

    data = client.get("/api/articles").json()

    assert [item["title"] for item in data] == ["Featured Article", "Non Featured"]
    assert "content" not in data[0]
    assert "content_html" not in data[0]
    assert data[0]["excerpt"] == "Test This is a test."


def test_get_article_by_slug_records_one_view_per_visitor(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    created = _create(client, admin_headers, title="Viewed Post")

    first = client.get("/api/articles/viewed-post")
    second = client.get("/api/articles/viewed-post")

    assert first.status_code == 200
    assert first.json()["id"] == created["id"]
    assert first.json()["views"] == 1
    assert second.json()["views"] == 1

    client.cookies.clear()
    other_visitor = client.get("/api/articles/viewed-post")
    assert other_visitor.json()["views"] == 2


def test_get_missing_article_returns_404(client: TestClient) -> None:
    response = client.get("/api/articles/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"error": "Article not found"}


def test_update_article(client: TestClient, admin_headers: dict[str, str]) -> None:
    created = _create(client, admin_headers, title="Before")

    response = client.put(
        f"/api/articles/{created['id']}",
        json={"title": "After", "content": f"New body\n\nhttps://youtu.be/{VIDEO_ID}"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    updated = response.json()
    assert updated["slug"] == "after"
    assert "youtube-nocookie.com/embed/" in updated["content_html"]
    assert client.get("/api/articles/before").status_code == 404

    featured = client.put(
        f"/api/articles/{created['id']}",
        json={"featured": True},
        headers=admin_headers,
    ).json()
    assert featured["featured"] is True
    assert featured["content_html"] == updated["content_html"]


def test_update_missing_article_returns_404(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    response = client.put(
        "/api/articles/article_missing",
        json={"featured": True},
        headers=admin_headers,
    )

    assert response.status_code == 404


def test_delete_article(client: TestClient, admin_headers: dict[str, str]) -> None:
    created = _create(client, admin_headers, title="Short Lived")
    client.post(f"/api/articles/{created['id']}/reactions", json={"type": "fire"})

    deleted = client.delete(f"/api/articles/{created['id']}", headers=admin_headers)
    again = client.delete(f"/api/articles/{created['id']}", headers=admin_headers)

    assert deleted.status_code == 204
    assert again.status_code == 404
    assert client.get("/api/articles/short-lived").status_code == 404


def test_reactions_are_deduplicated_per_visitor(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    created = _create(client, admin_headers, title="Reaction Test Article")
    url = f"/api/articles/{created['id']}/reactions"

    first = client.post(url, json={"type": "fire"})
    repeat = client.post(url, json={"type": "fire"})

    assert first.status_code == 200
    assert first.json() == {
        "reactions": {"fire": 1, "heart": 0, "thinking": 0, "clap": 0},
        "already_counted": False,
    }
    assert repeat.json()["already_counted"] is True
    assert repeat.json()["reactions"]["fire"] == 1

    mine = client.get(f"/api/articles/reactions/{created['id']}/me")
    assert mine.json() == {"reacted": ["fire"]}

    client.cookies.clear()
    fresh = client.get(f"/api/articles/reactions/{created['id']}/me")
    assert fresh.json() == {"reacted": []}


def test_invalid_reaction_type_returns_400(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    created = _create(client, admin_headers)

    response = client.post(f"/api/articles/{created['id']}/reactions", json={"type": "invalid"})

    assert response.status_code == 400
    assert response.json()["field"] == "type"


def test_reaction_on_missing_article_returns_404(client: TestClient) -> None:
    response = client.post("/api/articles/article_missing/reactions", json={"type": "clap"})

    assert response.status_code == 404


def test_stored_html_is_sanitized(client: TestClient, admin_headers: dict[str, str]) -> None:
    created = _create(
        client,
        admin_headers,
        title="Hostile",
        content=(
            "<script>alert(1)</script>\n\n"
            '<img src="x" onerror="alert(2)">\n\n'
            "[click](javascript:alert(3))"
        ),
    )

    html = created["content_html"]
    assert "<script" not in html
    assert "onerror" not in html
    assert 'href="javascript' not in html
    assert "<a " not in html


def test_deeply_nested_content_is_still_published(
    client: TestClient,
    admin_headers: dict[str, str],
) -> None:
    created = _create(client, admin_headers, title="Nested", content="> " * 500 + "x")

    assert "<blockquote>" in created["content_html"]
    assert client.get("/api/articles/nested").status_code == 200


def test_storage_failure_returns_503(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _refuse(*_args: Any, **_kwargs: Any) -> sqlite3.Connection:
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(database_module.sqlite3, "connect", _refuse)

    response = client.get("/api/articles")

    assert response.status_code == 503
    assert response.json() == {"error": "Storage unavailable"}
