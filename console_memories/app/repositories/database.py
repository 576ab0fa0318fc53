from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

from console_memories.app.errors import StorageError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    content TEXT NOT NULL,
    content_html TEXT NOT NULL,
    excerpt TEXT NOT NULL,
    featured INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_featured_created
ON articles(featured DESC, created_at DESC);

CREATE TABLE IF NOT EXISTS reaction_tallies (
    article_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
    PRIMARY KEY (article_id, kind),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS reaction_logs (
    visitor_id TEXT NOT NULL,
    article_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (visitor_id, article_id, kind),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_reaction_logs_article
ON reaction_logs(article_id);

CREATE TABLE IF NOT EXISTS view_tallies (
    article_id TEXT PRIMARY KEY,
    count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS view_logs (
    visitor_id TEXT NOT NULL,
    article_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (visitor_id, article_id),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_view_logs_article
ON view_logs(article_id);
"""


class Database:
    def __init__(self, path: Path | str, *, busy_timeout_seconds: float = 5.0) -> None:
        self._path = path
        self._busy_timeout_seconds = busy_timeout_seconds
        self._uri = isinstance(path, str) and path.startswith("file:")
        self._keepalive: sqlite3.Connection | None = None

    @classmethod
    def in_memory(cls) -> Database:
        """
        Isolated in-memory database, shared across this instance's connections.

        Shared-cache memory databases report table locks instead of waiting on
        them, so use a file-backed database for multi-threaded work.
        """
        database = cls(f"file:console_memories_{uuid4().hex}?mode=memory&cache=shared")
        database._keepalive = database._connect()
        return database

    @property
    def is_memory(self) -> bool:
        return self._uri and "mode=memory" in str(self._path)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_seconds,
                uri=self._uri,
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            conn.close()
            raise StorageError(f"Unable to open database: {exc}") from exc
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.DatabaseError as exc:
            conn.rollback()
            raise StorageError(f"Storage operation failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        if isinstance(self._path, Path):
            self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            if not self.is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)

    def close(self) -> None:
        if self._keepalive is not None:
            self._keepalive.close()
            self._keepalive = None
