from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from sqlite3 import Connection, Row
from uuid import uuid4

from console_memories.app.models.reactions import REACTION_KINDS
from console_memories.app.repositories.common import parse_iso, utc_now_iso
from console_memories.app.repositories.database import Database

_SLUG_CONSTRAINT_MARKER = "articles.slug"


class SlugConflictError(Exception):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Slug already taken: {slug}")
        self.slug = slug


@dataclass(frozen=True)
class ArticleRecord:
    article_id: str
    title: str
    slug: str
    content: str
    content_html: str
    excerpt: str
    featured: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ArticleChanges:
    title: str | None = None
    slug: str | None = None
    content: str | None = None
    content_html: str | None = None
    excerpt: str | None = None
    featured: bool | None = None


class ArticleRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_article(
        self,
        *,
        title: str,
        slug: str,
        content: str,
        content_html: str,
        excerpt: str,
        featured: bool,
    ) -> ArticleRecord:
        """
        Insert the article and zeroed tallies in a single transaction.

        Raises SlugConflictError when the UNIQUE constraint on slug rejects the row.
        """
        now_iso = utc_now_iso()
        article_id = f"article_{uuid4().hex}"
        with self._db.connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO articles (
                        id, title, slug, content, content_html, excerpt,
                        featured, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        article_id,
                        title,
                        slug,
                        content,
                        content_html,
                        excerpt,
                        1 if featured else 0,
                        now_iso,
                        now_iso,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                _raise_slug_conflict(exc, slug)
                raise
            conn.executemany(
                """
                INSERT INTO reaction_tallies (article_id, kind, count)
                VALUES (?, ?, 0)
                ON CONFLICT(article_id, kind) DO NOTHING
                """,
                [(article_id, kind.value) for kind in REACTION_KINDS],
            )
            conn.execute(
                """
                INSERT INTO view_tallies (article_id, count)
                VALUES (?, 0)
                ON CONFLICT(article_id) DO NOTHING
                """,
                (article_id,),
            )
            created = _get_article_with_conn(conn, article_id)
        if created is None:
            raise RuntimeError("Article was not found after insert")
        return created

    def update_article(self, article_id: str, changes: ArticleChanges) -> ArticleRecord | None:
        assignments: list[str] = []
        params: list[object] = []
        for column in ("title", "slug", "content", "content_html", "excerpt"):
            value = getattr(changes, column)
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        if changes.featured is not None:
            assignments.append("featured = ?")
            params.append(1 if changes.featured else 0)
        assignments.append("updated_at = ?")
        params.append(utc_now_iso())
        params.append(article_id)

        with self._db.connection() as conn:
            try:
                result = conn.execute(
                    f"UPDATE articles SET {', '.join(assignments)} WHERE id = ?",
                    tuple(params),
                )
            except sqlite3.IntegrityError as exc:
                _raise_slug_conflict(exc, changes.slug or "")
                raise
            if result.rowcount == 0:
                return None
            return _get_article_with_conn(conn, article_id)

    def delete_article(self, article_id: str) -> bool:
        with self._db.connection() as conn:
            result = conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
        return result.rowcount > 0

    def get_article(self, article_id: str) -> ArticleRecord | None:
        with self._db.connection() as conn:
            return _get_article_with_conn(conn, article_id)

    def get_article_by_slug(self, slug: str) -> ArticleRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM articles
                WHERE slug = ?
                LIMIT 1
                """,
                (slug,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_article(row)

    def list_articles(self) -> list[ArticleRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM articles
                ORDER BY featured DESC, created_at DESC
                """
            ).fetchall()
        return [_row_to_article(row) for row in rows]

    def slug_exists(self, slug: str, *, exclude_id: str | None = None) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT 1
                FROM articles
                WHERE slug = ? AND id != ?
                LIMIT 1
                """,
                (slug, exclude_id or ""),
            ).fetchone()
        return row is not None


def _raise_slug_conflict(exc: sqlite3.IntegrityError, slug: str) -> None:
    if _SLUG_CONSTRAINT_MARKER in str(exc):
        raise SlugConflictError(slug) from exc


def _get_article_with_conn(conn: Connection, article_id: str) -> ArticleRecord | None:
    row = conn.execute(
        """
        SELECT *
        FROM articles
        WHERE id = ?
        LIMIT 1
        """,
        (article_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_article(row)


def _row_to_article(row: Row) -> ArticleRecord:
    return ArticleRecord(
        article_id=str(row["id"]),
        title=str(row["title"]),
        slug=str(row["slug"]),
        content=str(row["content"]),
        content_html=str(row["content_html"]),
        excerpt=str(row["excerpt"]),
        featured=bool(row["featured"]),
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
    )
